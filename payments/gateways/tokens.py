import threading
import time
from typing import Callable, Optional, Tuple

# Tokens are refreshed this many seconds before the provider says they expire.
EXPIRY_MARGIN_SECONDS = 60


class AccessTokenCache:
    """
    Holds one bearer token per gateway instance.

    `fetch` returns ``(token, lifetime_seconds)``.  The lock makes sure
    concurrent callers share a single refresh instead of each requesting
    a token of their own.
    """

    def __init__(self, fetch: Callable[[], Tuple[str, float]], clock: Callable[[], float] = time.monotonic):
        self._fetch = fetch
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def get(self) -> str:
        with self._lock:
            if self._token is None or self._clock() >= self._expires_at:
                token, lifetime = self._fetch()
                self._token = token
                self._expires_at = self._clock() + max(float(lifetime) - EXPIRY_MARGIN_SECONDS, 0.0)
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0
