"""Hands OAuth tokens from the browser redirect back to the desktop client.

The client picks an opaque ``state``, opens ``/login?state=...`` in a browser
and polls ``/auth-check?state=...``. The callback stores the token triple under
that state; the first poll that asks for it takes it out of the map.
"""
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingAuth:
    access_token: str
    refresh_token: str
    expires_in: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class OAuthRelay:
    def __init__(self):
        self._pending: Dict[str, PendingAuth] = {}
        # callback and poll handlers run on both the event loop and the threadpool
        self._lock = threading.Lock()

    def begin(self, state: Optional[str]) -> None:
        """Nothing to register: the state travels in the redirect URL"""
        if not state:
            logger.warning("Login started without a state; the client will not be able to poll for tokens")
        else:
            logger.debug("OAuth login started")

    def complete(self, state: Optional[str], access_token: str, refresh_token: str, expires_in: int) -> bool:
        if not state:
            logger.warning("OAuth callback completed without a state; tokens were not stored")
            return False
        entry = PendingAuth(access_token=access_token, refresh_token=refresh_token, expires_in=int(expires_in))
        with self._lock:
            self._pending[state] = entry
        logger.info("OAuth tokens ready for pickup")
        return True

    def poll(self, state: Optional[str]) -> Optional[PendingAuth]:
        """Take the tokens for ``state``. None means authentication is still pending."""
        if not state:
            return None
        with self._lock:
            return self._pending.pop(state, None)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
