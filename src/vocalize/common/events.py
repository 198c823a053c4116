"""
Session events: the seam between the client core and whatever UI hosts it.

The core never renders or navigates by itself. It reports navigation
requests, short user-facing notices and the "has pending recordings" signal
here, and the host decides what to do with them.
"""

import logging
from collections.abc import Callable
from enum import Enum

from vocalize.common.models import Destination

logger = logging.getLogger(__name__)


class NoticeLevel(Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class SessionEvents:
    """
    Default event sink: logs everything.

    Subclass (or pass callbacks to CallbackSessionEvents) to route the events
    into a real UI.
    """

    def navigate(self, destination: Destination) -> None:
        logger.info(f"Navigation requested: {destination.value}")

    def notify(self, level: NoticeLevel, title: str, message: str = "") -> None:
        log = logger.error if level is NoticeLevel.ERROR else logger.info
        log(f"{title}: {message}" if message else title)

    def session_renewed(self) -> None:
        self.notify(NoticeLevel.INFO, "Session renewed", "Signed in again automatically")

    def pending_changed(self, has_pending: bool) -> None:
        logger.debug(f"Pending recordings changed (has_pending={has_pending})")


class CallbackSessionEvents(SessionEvents):
    """SessionEvents that forwards to optional callbacks."""

    def __init__(
        self,
        on_navigate: Callable[[Destination], None] | None = None,
        on_notify: Callable[[NoticeLevel, str, str], None] | None = None,
        on_pending_changed: Callable[[bool], None] | None = None,
    ):
        self._on_navigate = on_navigate
        self._on_notify = on_notify
        self._on_pending_changed = on_pending_changed

    def navigate(self, destination: Destination) -> None:
        super().navigate(destination)
        if self._on_navigate:
            self._on_navigate(destination)

    def notify(self, level: NoticeLevel, title: str, message: str = "") -> None:
        super().notify(level, title, message)
        if self._on_notify:
            self._on_notify(level, title, message)

    def pending_changed(self, has_pending: bool) -> None:
        super().pending_changed(has_pending)
        if self._on_pending_changed:
            self._on_pending_changed(has_pending)


class RecordingSessionEvents(SessionEvents):
    """Keeps every event in memory. Useful for tests and headless runs."""

    def __init__(self) -> None:
        self.destinations: list[Destination] = []
        self.notices: list[tuple[NoticeLevel, str, str]] = []
        self.pending_signals: list[bool] = []
        self.renewals = 0

    def navigate(self, destination: Destination) -> None:
        super().navigate(destination)
        self.destinations.append(destination)

    def notify(self, level: NoticeLevel, title: str, message: str = "") -> None:
        super().notify(level, title, message)
        self.notices.append((level, title, message))

    def session_renewed(self) -> None:
        self.renewals += 1
        super().session_renewed()

    def pending_changed(self, has_pending: bool) -> None:
        super().pending_changed(has_pending)
        self.pending_signals.append(has_pending)
