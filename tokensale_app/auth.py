"""
Operator authentication for the privileged trigger routes.

The admin password is configured as a PBKDF2-HMAC-SHA256 digest (`hash_password`
produces it); the plain text never lives in config. Each app owns one
`SessionStore` of opaque cookie tokens with an expiry.
"""

import hashlib
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from tokensale_app.config import SaleConfig

logger = logging.getLogger(__name__)

COOKIE_NAME = "tks_admin_session"


def hash_password(password: str, salt: str, iterations: int = 600_000) -> str:
    """Hex digest in the format expected by TOKENSALE_ADMIN_PASSWORD_HASH."""
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return digest.hex()


def verify_credentials(username: str, password: str, config: SaleConfig) -> bool:
    """Constant-time check of both fields. Fails closed when no digest is configured."""
    if not (config.admin_password_hash and config.admin_salt):
        logger.warning("Admin login refused: no admin password digest configured")
        return False

    name_matches = secrets.compare_digest(username.strip().lower(), config.admin_username.lower())
    candidate = hash_password(password, config.admin_salt, config.admin_iterations)
    password_matches = secrets.compare_digest(candidate, config.admin_password_hash.lower())
    if not (name_matches and password_matches):
        logger.warning("Admin login failed for %r", username)
        return False
    logger.info("Admin session opened for %s", config.admin_username)
    return True


class SessionStore:
    """token -> expiry (unix seconds). Expired tokens are dropped on access."""

    def __init__(self, ttl_seconds: int = 86_400, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._expiry: Dict[str, float] = {}

    def issue(self) -> str:
        token = secrets.token_urlsafe(32)
        now = self._clock()
        with self._lock:
            self._purge(now)
            self._expiry[token] = now + self.ttl_seconds
        return token

    def is_valid(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            expiry = self._expiry.get(token)
            if expiry is None:
                return False
            if self._clock() > expiry:
                del self._expiry[token]
                return False
            return True

    def revoke(self, token: Optional[str]) -> None:
        if token:
            with self._lock:
                self._expiry.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._expiry)

    def _purge(self, now: float) -> None:
        for token in [t for t, exp in self._expiry.items() if now > exp]:
            del self._expiry[token]
