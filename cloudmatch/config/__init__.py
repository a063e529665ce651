"""
Configuration, session and login package for CloudMatch

This package groups everything that decides *who* the application is talking
to the service as, and *how* it is configured:

1. Settings Management (settings.py):
   - Application configuration from YAML files and environment variables
   - Settings validation and persistence
   - Lazily created module-level settings instance

2. Session Persistence (session.py):
   - The Identity record (user id, nickname, avatar, session cookie, login time)
   - Durable storage with a 30-day expiry window

3. Login (auth.py):
   - QR-code login with status polling
   - Cookie login
   - Logout followed by a fresh QR login

Usage:

    from cloudmatch.config import get_settings, SessionStore, AuthEngine

    settings = get_settings()
    store = SessionStore(settings.get_session_storage_path())

Configuration sources, in order of precedence:
1. Environment variables
2. YAML configuration files
3. Default values
"""

# Settings management
from .settings import get_settings, reload_settings, Settings

# Session persistence
from .session import Identity, SessionStore

# Login state machine
from .auth import (
    AuthEngine,
    LoginChallenge,
    LoginState,
    LoginStatus,
    render_qr_ascii,
    render_qr_image
)

__all__ = [
    # Settings
    'get_settings',
    'reload_settings',
    'Settings',

    # Session
    'Identity',
    'SessionStore',

    # Login
    'AuthEngine',
    'LoginChallenge',
    'LoginState',
    'LoginStatus',
    'render_qr_ascii',
    'render_qr_image'
]
