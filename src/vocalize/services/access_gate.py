"""Access gate: where a signed-in user may go, given the server's permission flag."""

import logging

from vocalize.common.events import SessionEvents
from vocalize.common.models import Destination

logger = logging.getLogger(__name__)


def decide_destination(permission_granted: bool) -> Destination:
    """Main area when access was granted, the waiting screen otherwise."""
    return Destination.MAIN if permission_granted else Destination.AWAITING_ACCESS


def apply_access_gate(permission_granted: bool, events: SessionEvents) -> Destination:
    """Decide the destination and ask the host to navigate there."""
    destination = decide_destination(bool(permission_granted))
    if destination is Destination.AWAITING_ACCESS:
        logger.info("Access not granted yet; user must wait for approval")
    events.navigate(destination)
    return destination
