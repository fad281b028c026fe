import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Set

import aiohttp

from spotbridge.config import DEFAULT_TOTP_VERSION
from spotbridge.errors import SecretUnavailable, SpotBridgeError

logger = logging.getLogger(__name__)

# Fallback versions so a token can be derived before (or without) a remote refresh
FALLBACK_SECRETS: Dict[int, bytes] = {
    14: bytes([62, 54, 109, 83, 107, 77, 41, 103, 45, 93, 114, 38, 41, 97, 64, 51, 95, 94, 95, 94]),
    13: bytes([59, 92, 64, 70, 99, 78, 117, 75, 99, 103, 116, 67, 103, 51, 87, 63, 93, 59, 70, 45, 32]),
    61: bytes([
        44, 55, 47, 42, 70, 40, 34, 114, 76, 74, 50, 111, 120, 97, 75, 76, 94, 102, 43,
        69, 49, 120, 118, 80, 64, 78,
    ]),
}


def parse_secret_payload(payload: Any) -> Dict[int, bytes]:
    """Validate a ``{"<version>": [byte, ...]}`` document and convert it"""
    if not isinstance(payload, dict):
        raise ValueError("Secret payload is not a dictionary")

    parsed: Dict[int, bytes] = {}
    for key, value in payload.items():
        if not isinstance(key, str) or not key.isdigit():
            raise ValueError(f"Invalid secret key: {key!r}")
        if not isinstance(value, list) or not all(
            isinstance(entry, int) and not isinstance(entry, bool) and 0 <= entry <= 255 for entry in value
        ):
            raise ValueError(f"Invalid secret value for version {key}")
        parsed[int(key)] = bytes(value)
    return parsed


class SecretTable:
    """Versioned store of obfuscated TOTP secrets.

    Versions are only ever inserted or overwritten. Reads copy the value out
    under the lock so no caller holds it while deriving a secret.
    """

    def __init__(
        self,
        initial: Optional[Mapping[int, Iterable[int]]] = None,
        default_version: int = DEFAULT_TOTP_VERSION,
    ):
        seed = FALLBACK_SECRETS if initial is None else initial
        self._secrets: Dict[int, bytes] = {int(version): bytes(data) for version, data in seed.items()}
        if not self._secrets:
            raise SecretUnavailable("Secret table needs at least one seed version")
        self._lock = threading.Lock()
        self.default_version = default_version

    def get(self, version: int) -> bytes:
        with self._lock:
            data = self._secrets.get(version)
        if data is None:
            raise SecretUnavailable(f"Missing cipher bytes for version {version}")
        return data

    def all_versions(self) -> Set[int]:
        with self._lock:
            return set(self._secrets)

    def ensure_version(self, requested: Optional[int] = None) -> int:
        """Resolve which version to use; the pinned default when none is requested"""
        version = self.default_version if requested is None else requested
        if version not in self.all_versions():
            raise SecretUnavailable(f"No secret cipher available for version {version}")
        return version

    def merge(self, payload: Any) -> bool:
        """Insert or overwrite every version in ``payload``. Returns True if anything changed."""
        incoming = parse_secret_payload(payload)
        updated = False
        with self._lock:
            for version, data in incoming.items():
                if self._secrets.get(version) != data:
                    self._secrets[version] = data
                    updated = True
        return updated

    async def refresh_from_remote(self, loader: Callable[[], Awaitable[Any]]) -> bool:
        """Best-effort refresh; any failure leaves the current table in place"""
        try:
            payload = await loader()
            updated = self.merge(payload)
        except (SpotBridgeError, aiohttp.ClientError, ValueError) as e:
            logger.warning(f"Failed to refresh secret dictionary: {e}")
            return False

        if updated:
            logger.info(f"Secret dictionary updated, versions: {sorted(self.all_versions())}")
        else:
            logger.debug("Secret dictionary already up to date")
        return updated
