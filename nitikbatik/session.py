"""
Persisted session: the `{user, token, store}` triple kept in a cookie.

The cookie value is URL-quoted JSON shaped `{"state": {...}}`. Reading never
raises: a cookie that fails to decode is the logged-out state.
"""

import json
import logging
import time
from typing import Callable, Optional
from urllib.parse import quote, unquote

import jwt
from pydantic import ValidationError

from nitikbatik.config import Settings
from nitikbatik.models import Session

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CookieJar:
    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._cookies: dict[str, tuple[str, float]] = {}

    def get(self, name: str) -> Optional[str]:
        entry = self._cookies.get(name)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._cookies[name]
            return None
        return value

    def set(self, name: str, value: str, max_age: float) -> None:
        if max_age <= 0:
            self.delete(name)
            return
        self._cookies[name] = (value, self._clock() + max_age)

    def delete(self, name: str) -> None:
        self._cookies.pop(name, None)

    def expires_at(self, name: str) -> Optional[float]:
        entry = self._cookies.get(name)
        return entry[1] if entry else None


def encode_session_cookie(session: Session) -> str:
    return quote(json.dumps({"state": session.model_dump(mode="json")}))


def decode_session_cookie(raw: Optional[str]) -> Optional[Session]:
    if not raw:
        return None
    try:
        payload = json.loads(unquote(raw))
        state = payload["state"]
        return Session.model_validate(state)
    except (ValueError, TypeError, KeyError, ValidationError) as exc:
        logger.debug("discarding undecodable session cookie: %s", exc)
        return None


def token_expiry(token: Optional[str]) -> Optional[float]:
    """The token's `exp` claim, read without verifying the signature."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    try:
        return float(exp) if exp is not None else None
    except (TypeError, ValueError):
        return None


def is_session_valid(session: Optional[Session], now: Optional[float] = None) -> bool:
    if session is None or session.user is None:
        return False
    exp = token_expiry(session.token)
    if exp is None:
        return False
    return (time.time() if now is None else now) < exp


class SessionStore:
    def __init__(self, jar: CookieJar, settings: Settings, clock: Clock = time.time) -> None:
        self.jar = jar
        self.settings = settings
        self._clock = clock

    @property
    def cookie_name(self) -> str:
        return self.settings.session_cookie_name

    def raw(self) -> Optional[str]:
        return self.jar.get(self.cookie_name)

    def load(self) -> Session:
        return decode_session_cookie(self.raw()) or Session()

    def token(self) -> Optional[str]:
        return self.load().token

    def max_age_for(self, session: Session) -> float:
        """Cookie lifetime: never longer than the token it carries."""
        cap = float(self.settings.session_cookie_max_age)
        exp = token_expiry(session.token)
        if exp is None:
            return cap
        return min(cap, exp - self._clock())

    def save(self, session: Session) -> None:
        if session.user is None and session.token is None:
            self.clear()
            return
        max_age = self.max_age_for(session)
        if max_age <= 0:
            logger.warning("not persisting session: token already expired")
            self.clear()
            return
        self.jar.set(self.cookie_name, encode_session_cookie(session), max_age)

    def clear(self) -> None:
        self.jar.delete(self.cookie_name)
