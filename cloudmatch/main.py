"""
Main CLI interface for cloudmatch

This module provides the command-line front end for logging in to NetEase
Cloud Music, browsing the cloud drive and issuing match commands. Each
command builds the services, runs one coroutine on a fresh event loop and
shuts the services down again.

Command groups:
- Authentication (auth login, auth logout, auth status)
- Cloud drive (songs, match)
- Configuration management (config show, config set)
"""

import asyncio
import functools
import sys

import click

from . import __version__
from .app import Services, build_services
from .config.auth import LoginStatus, render_qr_ascii
from .config.settings import get_settings, reload_settings
from .netease import extract_cookie
from .sync.catalog import SORT_KEYS
from .utils.exceptions import CloudMatchError, SessionExpiredError
from .utils.helpers import (
    format_duration,
    format_file_size,
    format_timestamp,
    format_usage
)
from .utils.logger import configure_from_settings, get_current_log_file, get_logger

logger = get_logger(__name__)


def print_banner():
    """Print application banner to console"""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║                          cloudmatch                           ║
║                                                               ║
║       Match your NetEase Cloud Music cloud drive uploads      ║
║                                                               ║
╚═══════════════════════════════════════════════════════════════╝
    """
    click.echo(click.style(banner, fg='green', bold=True))


def handle_error(func):
    """
    Turn exceptions escaping a command into a red message and an exit code

    cloudmatch errors print their message (details go to the log file);
    anything else is logged with its traceback. Ctrl-C exits with 130.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo(click.style("\n\nOperation cancelled by user", fg='yellow'))
            sys.exit(130)  # Standard exit code for SIGINT
        except CloudMatchError as e:
            logger.debug(f"{type(e).__name__} details: {e.details}")
            click.echo(click.style(f"Error: {e.message}", fg='red'), err=True)
            sys.exit(1)
        except Exception as e:
            logger.debug("Unexpected error", exc_info=True)
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            sys.exit(1)
    return wrapper


def run_with_services(coro_factory):
    """
    Build services, run one coroutine with them, then shut them down

    Args:
        coro_factory: Callable taking Services and returning a coroutine

    Returns:
        Whatever the coroutine returns
    """
    async def runner():
        services = build_services(get_settings())
        try:
            return await coro_factory(services)
        finally:
            await services.aclose()

    return asyncio.run(runner())


# Main CLI group - root command that all subcommands attach to
@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', type=click.Path(), help='Path to config file')
@click.pass_context
def cli(ctx, version, verbose, config):
    """
    cloudmatch - NetEase Cloud Music cloud drive matcher

    Log in with a QR code or a browser cookie, list the songs in your cloud
    drive, and re-point badly tagged uploads at the right catalog song.
    """
    ctx.ensure_object(dict)

    if version:
        click.echo(f"cloudmatch v{__version__}")
        return

    settings = reload_settings(config) if config else get_settings()
    if config:
        click.echo(f"Loaded config: {config}")

    if verbose:
        settings.logging.level = 'DEBUG'
        ctx.obj['verbose'] = True

    configure_from_settings(settings)
    if verbose:
        logger.info("Verbose mode enabled")

    if ctx.invoked_subcommand is None:
        print_banner()
        click.echo(ctx.get_help())


# Authentication commands group
@cli.group()
def auth():
    """
    Authentication management

    Log in with a QR code or cookie, log out, and inspect the saved session.
    """
    pass


async def _qr_login(services: Services, timeout: float, save_qr: str) -> bool:
    engine = services.auth
    await engine.start_login()

    while True:
        state = engine.state
        if state.status == LoginStatus.AWAITING_SCAN and engine.challenge:
            click.echo(render_qr_ascii(engine.challenge.image_input))
            if save_qr and engine.qr_image is not None:
                engine.qr_image.save(save_qr)
                click.echo(f"QR code image saved to: {save_qr}")
            click.echo("Scan the code with the NetEase Cloud Music app and confirm the login")

        try:
            state = await engine.wait_for_result(timeout)
        except asyncio.TimeoutError:
            click.echo(click.style("Timed out waiting for the QR code to be confirmed", fg='red'), err=True)
            return False

        if state.status == LoginStatus.EXPIRED:
            if not click.confirm("QR code expired. Get a new one?", default=True):
                return False
            await engine.start_login()
            continue

        if state.status == LoginStatus.FAILED:
            click.echo(click.style(f"Login failed: {state.reason}", fg='red'), err=True)
            return False

        return True


async def _login(services: Services, cookie: str, timeout: float, save_qr: str) -> bool:
    engine = services.auth
    if engine.is_logged_in:
        click.echo(f"Already logged in as: {engine.identity.display_name}")
        return True

    if cookie is not None:
        if not await engine.login_with_cookie(cookie):
            click.echo(click.style(f"Login failed: {engine.state.reason}", fg='red'), err=True)
            return False
    elif not await _qr_login(services, timeout, save_qr):
        return False

    # After a QR login the first cloud drive sync is still running in the poll task
    while services.catalog.is_fetching:
        await asyncio.sleep(0.1)

    identity = engine.identity
    click.echo(click.style(f"Successfully logged in as: {identity.display_name}", fg='green'))
    if services.catalog.total_count is not None:
        click.echo(f"   Cloud drive: {services.catalog.total_count} songs, "
                   f"{format_usage(services.catalog.used_bytes, services.catalog.capacity_bytes)}")
    return True


@auth.command()
@click.option('--cookie', help='Log in with a cookie string (MUSIC_U=...) instead of a QR code')
@click.option('--timeout', type=float, default=300, show_default=True,
              help='Seconds to wait for the QR code to be confirmed')
@click.option('--save-qr', type=click.Path(dir_okay=False), help='Also save the QR code as an image file')
@handle_error
def login(cookie, timeout, save_qr):
    """
    Log in to NetEase Cloud Music

    Shows a QR code in the terminal and waits until it is scanned and
    confirmed in the mobile app. With --cookie, logs in with a cookie
    copied from a browser session instead.
    """
    if not run_with_services(lambda services: _login(services, cookie, timeout, save_qr)):
        sys.exit(1)


async def _logout(services: Services) -> None:
    # logout() begins a fresh QR attempt; run_with_services stops it via aclose()
    await services.auth.logout()


@auth.command()
@handle_error
def logout():
    """
    Remove the saved session

    Clears the stored identity and session cookie. You will need to log in
    again before using the cloud drive commands.
    """
    click.echo("Removing saved session...")
    run_with_services(_logout)
    click.echo("Successfully logged out")


@auth.command()
@handle_error
def status():
    """
    Check authentication status

    Displays who is logged in and when the saved session expires.
    """
    settings = get_settings()
    services = build_services(settings)
    try:
        identity = services.session_store.current
        if identity is None:
            click.echo("Authentication Status: Not logged in")
            click.echo("   Run 'cloudmatch auth login' to log in")
            return

        expires_at = identity.issued_at + services.session_store.expiry_window
        click.echo("Authentication Status: Logged in")
        click.echo(f"   User: {identity.display_name}")
        click.echo(f"   User ID: {identity.user_id}")
        click.echo(f"   Logged in: {format_timestamp(identity.issued_at)}")
        click.echo(f"   Session expires: {format_timestamp(expires_at)}")
        cookie_state = "present" if extract_cookie(identity.session_token) else "missing"
        click.echo(f"   Session cookie: MUSIC_U {cookie_state}")
        click.echo(f"   Session file: {services.session_store.path}")
    finally:
        services.transport.close()


def _require_login(services: Services) -> bool:
    if services.auth.is_logged_in:
        return True
    click.echo(click.style("Not logged in. Run 'cloudmatch auth login' first", fg='red'), err=True)
    return False


async def _songs(services: Services, page: int, page_size: int, search: str, sort: str, ascending: bool) -> bool:
    if not _require_login(services):
        return False

    catalog = services.catalog
    try:
        snapshot = await catalog.fetch_page(page, page_size)
    except SessionExpiredError as e:
        click.echo(click.style(f"{e.message}. Run 'cloudmatch auth login'", fg='red'), err=True)
        return False

    if snapshot is None:
        click.echo(click.style("Cloud drive could not be fetched", fg='red'), err=True)
        return False

    entries = catalog.sorted_songs(sort, reverse=not ascending, entries=catalog.search(search))
    if not entries:
        click.echo("No songs found")
    for entry in entries:
        click.echo(
            f"{entry.song_id:>12}  {entry.title} - {entry.artist_name}  [{entry.album_name}]  "
            f"{format_duration(entry.duration_ms)}  {format_file_size(entry.file_size_bytes)}  "
            f"{format_timestamp(entry.added_at)}"
        )

    total_pages = catalog.total_pages()
    click.echo(
        f"\nPage {snapshot.page}/{total_pages if total_pages is not None else '?'}"
        f"   Showing {len(entries)} of {catalog.total_count if catalog.total_count is not None else '?'} songs"
        f"   Storage: {format_usage(catalog.used_bytes, catalog.capacity_bytes)}"
    )
    return True


@cli.command()
@click.option('--page', '-p', type=click.IntRange(min=1), default=1, show_default=True, help='Page number')
@click.option('--page-size', type=click.IntRange(min=1), help='Songs per page (defaults to config)')
@click.option('--search', '-s', help='Only show songs whose title, artist or album contains this text')
@click.option('--sort', type=click.Choice(SORT_KEYS), default='added_at', show_default=True, help='Sort field')
@click.option('--ascending', is_flag=True, help='Sort ascending instead of newest/largest first')
@handle_error
def songs(page, page_size, search, sort, ascending):
    """
    List songs in your cloud drive

    Fetches one page of the cloud drive and prints it, optionally filtered
    by a search text.
    """
    if not run_with_services(lambda services: _songs(services, page, page_size, search, sort, ascending)):
        sys.exit(1)


async def _match(services: Services, song_id: str, target_id: str, page: int, page_size: int) -> bool:
    if not _require_login(services):
        return False

    try:
        await services.catalog.fetch_page(page, page_size)
    except SessionExpiredError as e:
        click.echo(click.style(f"{e.message}. Run 'cloudmatch auth login'", fg='red'), err=True)
        return False

    result = await services.matcher.match_song(song_id, target_id)
    entry = services.activity_log.last()
    line = entry.format_line() if entry else result.message

    if result.success:
        click.echo(click.style(line, fg='green'))
        if result.updated_entry is not None:
            updated = result.updated_entry
            click.echo(f"   Now: {updated.title} - {updated.artist_name} [{updated.album_name}]")
        return True

    click.echo(click.style(line, fg='red'), err=True)
    if result.message == "cloud file does not exist":
        click.echo(f"   Song {song_id} is not on page {page}; use --page to look elsewhere")
    return False


@cli.command()
@click.argument('song_id')
@click.argument('target_id')
@click.option('--page', '-p', type=click.IntRange(min=1), default=1, show_default=True,
              help='Cloud drive page that contains SONG_ID')
@click.option('--page-size', type=click.IntRange(min=1), help='Songs per page (defaults to config)')
@handle_error
def match(song_id, target_id, page, page_size):
    """
    Match a cloud drive song to a catalog song

    SONG_ID is the current id of the uploaded song (see 'cloudmatch songs'),
    TARGET_ID the id of the NetEase catalog song it should be matched to.
    """
    if not run_with_services(lambda services: _match(services, song_id, target_id, page, page_size)):
        sys.exit(1)


# Configuration commands group
@cli.group()
def config():
    """
    Configuration management

    View and modify service, login, paging and logging settings.
    """
    pass


@config.command()
@handle_error
def show():
    """Show current configuration"""
    settings = get_settings()

    click.echo("Current Configuration:\n")

    click.echo("Service:")
    click.echo(f"   Base URL: {settings.netease.base_url}")
    click.echo(f"   Request timeout: {settings.netease.request_timeout}s")
    click.echo(f"   Debug tracing: {settings.netease.debug}")

    click.echo("\nLogin:")
    click.echo(f"   Poll interval: {settings.login.poll_interval}s")
    click.echo(f"   Session expiry: {settings.login.session_expiry_days} days")

    click.echo("\nCloud drive:")
    click.echo(f"   Page size: {settings.catalog.page_size}")

    click.echo("\nLogging:")
    click.echo(f"   Level: {settings.logging.level}")
    click.echo(f"   File: {settings.logging.file or '(console only)'}")
    active_log = get_current_log_file()
    if active_log:
        click.echo(f"   Writing to: {active_log}")

    click.echo("\nStorage:")
    click.echo(f"   Session file: {settings.get_session_storage_path()}")
    click.echo(f"   Config directory: {settings.get_config_directory()}")


@config.command(name='set')
@click.option('--base-url', help='Set the service base URL')
@click.option('--page-size', type=click.IntRange(min=1), help='Set songs per page')
@click.option('--poll-interval', type=click.FloatRange(min=0, min_open=True), help='Set QR login poll interval in seconds')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Set log level')
@handle_error
def set_config(base_url, page_size, poll_interval, log_level):
    """
    Update configuration settings

    Changes are saved to the user configuration file and apply to the next
    command.
    """
    settings = get_settings()
    changes = []

    if base_url:
        settings.netease.base_url = base_url
        changes.append(f"Base URL: {base_url}")

    if page_size:
        settings.catalog.page_size = page_size
        changes.append(f"Page size: {page_size}")

    if poll_interval is not None:
        settings.login.poll_interval = poll_interval
        changes.append(f"Poll interval: {poll_interval}s")

    if log_level:
        settings.logging.level = log_level.upper()
        changes.append(f"Log level: {log_level.upper()}")

    if not changes:
        click.echo("No changes specified")
        return

    if not settings.validate():
        raise CloudMatchError("Configuration is invalid, nothing saved")

    path = settings.save_config()
    click.echo(f"Configuration updated ({path}):")
    for change in changes:
        click.echo(f"   • {change}")


# Entry point for module execution
if __name__ == '__main__':
    cli()
