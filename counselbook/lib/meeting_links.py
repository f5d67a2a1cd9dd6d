"""
Meeting identifiers and join links for confirmed sessions.

A meeting ID is a short opaque token minted once per booking, when it is
first confirmed. The web app serves the video room at
``{app_base_url}/connect/{meeting_id}``.
"""
import hashlib
import time
from typing import Callable, Optional

from counselbook.lib.settings import settings
from counselbook.lib.logging import get_logger


logger = get_logger(__name__)

MEETING_ID_LENGTH = 12


class MeetingIdGenerator:
    """
    Derive meeting IDs from requester identity and the current time.

    IDs are the first 12 hex characters of SHA-256 over
    ``"{seed}-{epoch_millis}"``. They are not collision-checked; the caller
    stores the first generated value and never regenerates it.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Args:
            clock: Returns epoch seconds (defaults to time.time)
        """
        self._clock = clock or time.time

    def generate(self, identity_seed: str, at_millis: Optional[int] = None) -> str:
        """
        Generate a meeting ID.

        Args:
            identity_seed: Requester identity, usually the booking email
            at_millis: Epoch milliseconds to hash (defaults to now)

        Returns:
            12-character lowercase hex string
        """
        if at_millis is None:
            at_millis = int(self._clock() * 1000)

        digest = hashlib.sha256(f"{identity_seed}-{at_millis}".encode("utf-8")).hexdigest()
        return digest[:MEETING_ID_LENGTH]


def build_meeting_url(meeting_id: str, base_url: Optional[str] = None) -> str:
    """
    Build the session join URL for a meeting ID.

    Example:
        >>> build_meeting_url("a1b2c3d4e5f6", "https://groom.app")
        'https://groom.app/connect/a1b2c3d4e5f6'
    """
    base = (base_url or settings.app_base_url).rstrip("/")
    return f"{base}/connect/{meeting_id}"


# Factory function
def get_meeting_id_generator() -> MeetingIdGenerator:
    """Get MeetingIdGenerator instance backed by the wall clock."""
    return MeetingIdGenerator()
