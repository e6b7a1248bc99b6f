"""Cart identity persistence (the ``cart_id`` cookie)."""

import json
import logging
import os
import time
from http.cookies import SimpleCookie
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

CART_COOKIE_NAME = "cart_id"
CART_COOKIE_DAYS = 30


class StoredCookie(BaseModel):
    value: str
    expires_at: float


class CartIdStore:
    """
    Stores the single ``cart_id`` value with an expiry.

    The value is persisted to a JSON file so a cart survives restarts, the
    same way a browser keeps the cookie. Pass ``session_file=None`` together
    with ``persist=False`` to keep it in memory only.
    """

    def __init__(
        self,
        session_file: Optional[str] = None,
        persist: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the store.

        Args:
            session_file: Path to store cookies. Defaults to ~/.storefront_session.json
            persist: Write changes to session_file
            clock: Wall-clock time source in seconds
        """
        if session_file is None and persist:
            session_file = str(Path.home() / ".storefront_session.json")
        self.session_file = session_file if persist else None
        self.clock = clock
        self._cookies: dict[str, StoredCookie] = self._load()

    def _load(self) -> dict[str, StoredCookie]:
        """Load cookies from file if it exists."""
        if not self.session_file or not os.path.exists(self.session_file):
            return {}
        try:
            with open(self.session_file, "r") as f:
                data = json.load(f)
            return {name: StoredCookie(**cookie) for name, cookie in data.get("cookies", {}).items()}
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            # Corrupted file, start fresh
            logger.warning(f"Could not load cookies from {self.session_file}: {e}")
            return {}

    def _save(self) -> None:
        if not self.session_file:
            return
        with open(self.session_file, "w") as f:
            json.dump({"cookies": {name: c.model_dump() for name, c in self._cookies.items()}}, f)
        os.chmod(self.session_file, 0o600)

    def get_cookie(self, name: str) -> Optional[str]:
        """Return a cookie value, or None if missing or expired."""
        cookie = self._cookies.get(name)
        if cookie is None:
            return None
        if self.clock() >= cookie.expires_at:
            logger.info(f"Cookie {name} expired")
            self.delete_cookie(name)
            return None
        return cookie.value

    def set_cookie(self, name: str, value: str, days: int = CART_COOKIE_DAYS) -> None:
        self._cookies[name] = StoredCookie(value=value, expires_at=self.clock() + days * 24 * 60 * 60)
        self._save()

    def delete_cookie(self, name: str) -> None:
        if self._cookies.pop(name, None) is not None:
            self._save()

    def get_cart_id(self) -> Optional[str]:
        return self.get_cookie(CART_COOKIE_NAME)

    def set_cart_id(self, cart_id: str) -> None:
        logger.info(f"Storing cart_id {cart_id}")
        self.set_cookie(CART_COOKIE_NAME, cart_id, CART_COOKIE_DAYS)

    def delete_cart_id(self) -> None:
        logger.info("Clearing cart_id")
        self.delete_cookie(CART_COOKIE_NAME)

    def set_cookie_header(self) -> Optional[str]:
        """Render the cart cookie as a ``Set-Cookie`` header value."""
        cart_id = self.get_cart_id()
        if cart_id is None:
            return None
        cookie: SimpleCookie = SimpleCookie()
        cookie[CART_COOKIE_NAME] = cart_id
        morsel = cookie[CART_COOKIE_NAME]
        morsel["path"] = "/"
        morsel["max-age"] = str(CART_COOKIE_DAYS * 24 * 60 * 60)
        morsel["samesite"] = "Lax"
        return morsel.OutputString()
