"""
Vocalize client package.

Authenticated access to the Vocalize research API with:
- Single-flight token refresh and silent re-login
- Offline-aware, time-boxed local caching of list resources
- A local queue of recordings waiting for upload
"""

from vocalize.common.version import get_version

__version__ = get_version()
