"""
Service wiring for cloudmatch

build_services() constructs every long-lived object exactly once and hands
each its collaborators explicitly:

    Transport ──┬── AuthEngine ──────┐
                ├── CatalogSyncEngine ◄┘ (logout on expired session)
                └── MatchEngine ── ActivityLog
    SessionStore is shared by all three engines.

Consumers (the CLI, a GUI, tests) hold on to the returned Services object
instead of reaching for module-level singletons.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from .config.auth import AuthEngine, render_qr_image
from .config.session import SessionStore
from .config.settings import Settings, get_settings
from .netease import Transport
from .sync.activity import ActivityLog
from .sync.catalog import CatalogSyncEngine
from .sync.matcher import MatchEngine
from .utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    """Container for the wired-up service objects"""
    settings: Settings
    transport: Transport
    session_store: SessionStore
    auth: AuthEngine
    catalog: CatalogSyncEngine
    matcher: MatchEngine
    activity_log: ActivityLog

    async def aclose(self) -> None:
        """Stop background work and release the HTTP session"""
        await self.auth.aclose()
        self.transport.close()


def build_services(
    settings: Optional[Settings] = None,
    transport: Optional[Transport] = None,
    renderer: Optional[Callable[[str], Any]] = render_qr_image,
    restore_session: bool = True
) -> Services:
    """
    Build all services from settings

    Args:
        settings: Application settings, defaults to get_settings()
        transport: Pre-built transport (tests pass a fake one)
        renderer: QR image renderer handed to the AuthEngine
        restore_session: Load a saved session from disk

    Returns:
        Services with the catalog attached to the AuthEngine
    """
    settings = settings or get_settings()

    if transport is None:
        transport = Transport(
            base_url=settings.netease.base_url,
            timeout=settings.netease.request_timeout,
            user_agent=settings.netease.user_agent,
            debug=settings.netease.debug,
        )

    session_store = SessionStore(
        settings.get_session_storage_path(),
        expiry_days=settings.login.session_expiry_days,
    )

    auth = AuthEngine(
        transport,
        session_store,
        poll_interval=settings.login.poll_interval,
        renderer=renderer,
    )
    catalog = CatalogSyncEngine(
        transport,
        session_store,
        auth=auth,
        page_size=settings.catalog.page_size,
    )
    auth.attach_catalog(catalog)

    activity_log = ActivityLog()
    matcher = MatchEngine(transport, session_store, catalog, activity_log)

    if restore_session:
        auth.restore_session()

    logger.debug("Services initialized")
    return Services(
        settings=settings,
        transport=transport,
        session_store=session_store,
        auth=auth,
        catalog=catalog,
        matcher=matcher,
        activity_log=activity_log,
    )
