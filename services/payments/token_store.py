# services/payments/token_store.py
from __future__ import annotations
import time
from typing import MutableMapping, Any, Callable, Optional

TOKEN_KEY = "amazon_fps_token"


class TokenStore:
    """
    Holds the provider's authorization token for one identity.

    `storage` is any session-scoped mapping (flask.session in the app).
    Keys are namespaced by tenant and user so a token never crosses
    deployments sharing a session backend, or users sharing a browser.
    """

    def __init__(self, storage: MutableMapping[str, Any], tenant_id: str, user_id: str,
                 ttl: int = 3600, clock: Callable[[], float] = time.time):
        self.storage = storage
        self.tenant_id = str(tenant_id)
        self.user_id = str(user_id)
        self.ttl = int(ttl)
        self._clock = clock

    @property
    def key(self) -> str:
        return f"{self.tenant_id}_{self.user_id}_{TOKEN_KEY}"

    def set_token(self, token: str) -> None:
        if not token:
            raise ValueError("empty authorization token")
        self.storage[self.key] = {"token": token, "issued_at": self._clock()}

    def get_token(self) -> Optional[str]:
        entry = self.storage.get(self.key)
        if not entry:
            return None
        if self.ttl > 0 and self._clock() - float(entry.get("issued_at") or 0) > self.ttl:
            self.clear_token()
            return None
        return entry.get("token") or None

    def clear_token(self) -> None:
        self.storage.pop(self.key, None)
