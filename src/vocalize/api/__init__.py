"""HTTP access to the Vocalize API: client core and refresh coordination."""

from vocalize.api.client import APIClient, FilePart
from vocalize.api.refresh import RefreshCoordinator, RefreshState

__all__ = ["APIClient", "FilePart", "RefreshCoordinator", "RefreshState"]
