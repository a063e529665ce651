"""
cloudmatch: NetEase Cloud Music cloud drive matcher

Songs uploaded to the NetEase Cloud Music cloud drive ("云盘") are often
matched to the wrong catalog song, or to none at all, which loses lyrics,
cover art and play counts. cloudmatch logs in to the service, lists the
cloud drive and re-points uploads at the right catalog entry.

## Core Architecture

**Transport (`cloudmatch/netease/`)**
- One shared HTTP transport built on requests, run off the event loop
- Typed decoders for every endpoint response

**Configuration and Login (`cloudmatch/config/`)**
- Settings from YAML files and environment variables
- Session persistence with a 30-day expiry window
- QR-code login with background polling, and cookie login

**Cloud Drive (`cloudmatch/sync/`)**
- Paginated catalog fetch with a single in-flight guard
- Match commands that replace catalog entries in place
- Append-only activity log

**Utilities (`cloudmatch/utils/`)**
- Logging, exception hierarchy and formatting helpers

All services are created once by `cloudmatch.app.build_services()` and
passed to each other explicitly. The command line front end lives in
`cloudmatch.main`.

## Usage

    cloudmatch auth login              # scan the QR code with the mobile app
    cloudmatch songs --search "live"   # list cloud drive songs
    cloudmatch match 111 222           # match song 111 to catalog song 222
"""

# Version information for the cloudmatch package
__version__ = "0.9.0"

# Package author information
__author__ = "cloudmatch contributors"

# Concise description of package functionality for package managers
__description__ = "Match songs in your NetEase Cloud Music cloud drive to catalog entries"

__all__ = [
    "__version__",
    "__author__",
    "__description__"
]
