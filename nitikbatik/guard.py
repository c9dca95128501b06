"""
Role-based route guard.

Protected path prefixes map to the one role allowed under them. A request
without a usable session goes to the login page; a logged-in user with the
wrong role goes to their own dashboard instead. The cookie is decoded, never
verified: its signature is the issuing server's business, so tampering is
only noticed when the cookie does not decode.

The check runs at the edge (`RoleGuardMiddleware`) and once more on the
client after persisted state has had a moment to rehydrate (`recheck`).
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.types import ASGIApp

from nitikbatik.auth import AuthStore
from nitikbatik.models import Role, Session
from nitikbatik.navigation import Navigator
from nitikbatik.retry import Sleep
from nitikbatik.session import decode_session_cookie, is_session_valid

logger = logging.getLogger(__name__)

PROTECTED_ROUTES: dict[str, str] = {
    "/admin/dashboard": Role.ADMIN.value,
    "/penjual/dashboard": Role.PENJUAL.value,
}

ROLE_HOME: dict[str, str] = {
    Role.ADMIN.value: "/admin/dashboard",
    Role.PENJUAL.value: "/penjual/dashboard",
}


class GuardState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    WRONG_ROLE = "wrong_role"
    AUTHORIZED = "authorized"


class GuardDecision(BaseModel):
    state: GuardState
    redirect_to: Optional[str] = None


def required_role(path: str) -> Optional[str]:
    for prefix, role in PROTECTED_ROUTES.items():
        if path.startswith(prefix):
            return role
    return None


def home_for(role: Optional[str]) -> str:
    return ROLE_HOME.get(role or "", "/")


def evaluate(path: str, session: Optional[Session], now: Optional[float] = None,
             login_path: str = "/login") -> GuardDecision:
    role = required_role(path)
    if role is None:
        return GuardDecision(state=GuardState.AUTHORIZED)
    if not is_session_valid(session, now):
        return GuardDecision(state=GuardState.UNAUTHENTICATED, redirect_to=login_path)
    user_role = session.user.role
    if user_role != role:
        return GuardDecision(state=GuardState.WRONG_ROLE, redirect_to=home_for(user_role))
    return GuardDecision(state=GuardState.AUTHORIZED)


def check_request(path: str, raw_cookie: Optional[str], now: Optional[float] = None,
                  login_path: str = "/login") -> GuardDecision:
    return evaluate(path, decode_session_cookie(raw_cookie), now, login_path)


class RoleGuardMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, cookie_name: str = "auth-storage",
                 login_path: str = "/login", clock: Callable[[], float] = time.time) -> None:
        super().__init__(app)
        self.cookie_name = cookie_name
        self.login_path = login_path
        self.clock = clock

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        decision = check_request(request.url.path, request.cookies.get(self.cookie_name),
                                 now=self.clock(), login_path=self.login_path)
        if decision.redirect_to is not None:
            logger.info("guard: %s %s -> %s", decision.state.value,
                        request.url.path, decision.redirect_to)
            return RedirectResponse(decision.redirect_to, status_code=307)
        return await call_next(request)


async def recheck(auth: AuthStore, navigator: Navigator, path: str,
                  delay: float = 0.1, sleep: Sleep = asyncio.sleep,
                  login_path: str = "/login", now: Optional[float] = None) -> GuardDecision:
    """Client-side pass of the guard, once persisted state is back in memory."""
    await sleep(delay)
    if auth.user is None:
        auth.rehydrate()
    decision = evaluate(path, Session(user=auth.user, token=auth.token), now, login_path)
    if decision.redirect_to is not None:
        navigator.push(decision.redirect_to)
    return decision
