from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

from requests.cookies import RequestsCookieJar, create_cookie, remove_cookie_by_name

from config import YamlConfig
from logger import get_logger

logger = get_logger("session")

AUTH_COOKIE = "auth_token"
DEFAULT_COOKIE_MAX_AGE = 24 * 3600

TOKEN_STORAGE_KEYS = ("authToken", "token", "access_token")
AUTH_STORAGE_KEYS = TOKEN_STORAGE_KEYS + ("is_logged_in", "user_phone", "user_id")
AUTH_COOKIES = (
    AUTH_COOKIE,
    "access_token",
    "is_logged_in",
    "user_phone",
    "user_id",
    "PHPSESSID",
)


class LocalStorage:
    """Durable key/value storage persisted to a YAML file."""

    def __init__(self, path: str = "session.yaml") -> None:
        self._config = YamlConfig(path)
        self._data = self._config.load()

    def get_item(self, key: str) -> Optional[str]:
        value = self._data.get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._config.save(self._data)

    def remove_items(self, *keys: str) -> list[str]:
        """Remove ``keys`` and return the ones that were present."""
        removed = [k for k in keys if k in self._data]
        for key in removed:
            del self._data[key]
            self._config.forget(key)
        if removed:
            self._config.save(self._data)
        return removed

    def keys(self) -> list[str]:
        return list(self._data)


@dataclass
class Session:
    token: Optional[str]
    issued_via: Optional[str]
    epoch: int
    persisted: dict = field(default_factory=dict)


class SessionStore:
    """Single write path for the auth token.

    The token lives both in durable storage and in the ``auth_token`` cookie.
    Only ``set`` and ``clear`` touch either of them.
    """

    def __init__(
        self,
        storage: Optional[LocalStorage] = None,
        cookies: Optional[RequestsCookieJar] = None,
        cookie_max_age: int = DEFAULT_COOKIE_MAX_AGE,
    ) -> None:
        self.storage = storage if storage is not None else LocalStorage()
        self.cookies = cookies if cookies is not None else RequestsCookieJar()
        self.cookie_max_age = cookie_max_age
        self.issued_via: Optional[str] = None
        self._epoch = 0

    @property
    def epoch(self) -> int:
        """Counter bumped every time the session is replaced or destroyed."""
        return self._epoch

    def get(self) -> Optional[str]:
        for key in TOKEN_STORAGE_KEYS:
            token = self.storage.get_item(key)
            if token:
                return token
        return None

    def set(self, token: str, issued_via: str = "login") -> None:
        if not token:
            raise ValueError("token must be a non-empty string")
        if issued_via not in ("login", "test"):
            raise ValueError(f"unknown session origin: {issued_via}")
        for key in TOKEN_STORAGE_KEYS:
            self.storage.set_item(key, token)
        self.storage.set_item("is_logged_in", "true")
        remove_cookie_by_name(self.cookies, AUTH_COOKIE)
        self.cookies.set_cookie(
            create_cookie(
                AUTH_COOKIE,
                token,
                path="/",
                expires=int(time.time()) + self.cookie_max_age,
                rest={"SameSite": "Strict"},
            )
        )
        self.issued_via = issued_via
        self._epoch += 1
        logger.info("Session established via %s (epoch %d)", issued_via, self._epoch)

    def clear(self) -> None:
        removed = self.storage.remove_items(*AUTH_STORAGE_KEYS)
        had_cookies = [name for name in AUTH_COOKIES if name in self.cookies]
        for name in had_cookies:
            remove_cookie_by_name(self.cookies, name)
        self.issued_via = None
        if removed or had_cookies:
            self._epoch += 1
            logger.info("Session cleared (epoch %d)", self._epoch)

    def cookie_token(self) -> Optional[str]:
        """Token as seen by server-side readers of the cookie."""
        self.cookies.clear_expired_cookies()
        return self.cookies.get(AUTH_COOKIE)

    def remember_user(self, phone: str, user_id: Optional[str] = None) -> None:
        self.storage.set_item("user_phone", phone.strip())
        if user_id:
            self.storage.set_item("user_id", str(user_id))

    def initial_route(self, login_path: str = "/login") -> str:
        """Where to send a freshly opened app."""
        if self.storage.get_item("authToken") or self.storage.get_item("token"):
            return "/dashboard"
        return login_path

    @property
    def session(self) -> Session:
        return Session(
            token=self.get(),
            issued_via=self.issued_via,
            epoch=self._epoch,
            persisted={
                "storage": self.get() is not None,
                "cookie": self.cookie_token() is not None,
            },
        )
