"""
NetEase Cloud Music integration package

transport.py performs the HTTP calls; models.py decodes each endpoint's
response into typed results. Endpoint paths are collected here so the engines
share one definition of the remote interface.
"""

from .transport import (
    Transport,
    TransportResponse,
    build_cookie_header,
    extract_cookie,
    SESSION_COOKIE_NAME
)
from .models import (
    CatalogEntry,
    CloudPage,
    MatchResponse,
    QrKeyResponse,
    QrLoginCode,
    QrPollResponse,
    UserProfile
)

QR_KEY_ENDPOINT = "/api/login/qrcode/unikey"
QR_POLL_ENDPOINT = "/api/login/qrcode/client/login"
ACCOUNT_ENDPOINT = "/api/nuser/account/get"
CLOUD_LIST_ENDPOINT = "/api/v1/cloud/get"
CLOUD_MATCH_ENDPOINT = "/api/cloud/user/song/match"

# Page the QR code points at; the mobile app recognises it and asks to confirm
QR_LOGIN_URL = "https://music.163.com/login?codekey={key}"

__all__ = [
    'Transport',
    'TransportResponse',
    'build_cookie_header',
    'extract_cookie',
    'SESSION_COOKIE_NAME',
    'CatalogEntry',
    'CloudPage',
    'MatchResponse',
    'QrKeyResponse',
    'QrLoginCode',
    'QrPollResponse',
    'UserProfile',
    'QR_KEY_ENDPOINT',
    'QR_POLL_ENDPOINT',
    'ACCOUNT_ENDPOINT',
    'CLOUD_LIST_ENDPOINT',
    'CLOUD_MATCH_ENDPOINT',
    'QR_LOGIN_URL',
]
