# cloudmatch/utils/__init__.py
"""
Utilities package
Logging, exceptions and formatting helpers
"""

from .logger import (
    get_logger,
    configure_from_settings,
    setup_logging,
    get_current_log_file,
    parse_size
)
from .helpers import (
    format_duration,
    format_file_size,
    format_timestamp,
    format_usage,
    contains_text,
    coerce_int
)
from .exceptions import (
    CloudMatchError,
    ConfigError,
    SessionStoreError,
    PreconditionError,
    TransportError,
    UnauthorizedError,
    MalformedResponseError,
    SessionExpiredError,
    RemoteServiceError
)

__all__ = [
    # Logger exports
    'get_logger',
    'configure_from_settings',
    'setup_logging',
    'get_current_log_file',
    'parse_size',

    # Helper exports
    'format_duration',
    'format_file_size',
    'format_timestamp',
    'format_usage',
    'contains_text',
    'coerce_int',

    # Exceptions
    'CloudMatchError',
    'ConfigError',
    'SessionStoreError',
    'PreconditionError',
    'TransportError',
    'UnauthorizedError',
    'MalformedResponseError',
    'SessionExpiredError',
    'RemoteServiceError',
]
