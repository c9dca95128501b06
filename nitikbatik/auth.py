import logging
import time
from typing import Any, Optional

from pydantic import ValidationError

from nitikbatik.client import ApiClient
from nitikbatik.errors import ApiError, ResponseError, error_message
from nitikbatik.models import Id, Role, Session, Shop, User
from nitikbatik.session import SessionStore, token_expiry

logger = logging.getLogger(__name__)


class AuthStore:
    """Who is logged in, their token, and (for sellers) their shop.

    Mirrors its state into the session cookie after every change, so the
    API client and the route guard see the same identity.
    """

    def __init__(self, client: ApiClient, session: SessionStore) -> None:
        self.client = client
        self.session = session
        self.user: Optional[User] = None
        self.token: Optional[str] = None
        self.store: Optional[Shop] = None
        self.is_loading = False
        self.is_loading_store = False
        self.error: Optional[str] = None
        client.on_unauthorized(self._forget)

    # ── persistence ───────────────────────────────────────────────────────────

    def rehydrate(self) -> None:
        persisted = self.session.load()
        self.user = persisted.user
        self.token = persisted.token
        self.store = persisted.store

    def _persist(self) -> None:
        self.session.save(Session(user=self.user, token=self.token, store=self.store))

    def _forget(self) -> None:
        self.user = None
        self.token = None
        self.store = None
        self.is_loading_store = False

    # ── actions ───────────────────────────────────────────────────────────────

    async def login(self, email: str, password: str) -> User:
        self.is_loading = True
        self.error = None
        try:
            data = await self.client.post("/login", json={"email": email, "password": password})
            user, token = self._identity(data)
        except ApiError as exc:
            self.error = error_message(exc, "Login failed. Please try again.")
            self.is_loading = False
            self._forget()
            self.session.clear()
            raise

        logger.info("user %s logged in as %s", user.id, user.role)
        self.user, self.token = user, token
        self.is_loading = False
        self._persist()

        if user.role == Role.PENJUAL:
            await self.fetch_user_store(user.id)
        return user

    async def register(self, name: str, email: str, password: str,
                       role: str = Role.PENJUAL.value) -> User:
        self.is_loading = True
        self.error = None
        try:
            data = await self.client.post(
                "/register",
                json={"name": name, "email": email, "password": password, "role": role},
            )
            user, token = self._identity(data)
        except ApiError as exc:
            self.error = error_message(exc, "Registration failed. Please try again.")
            self.is_loading = False
            self.store = None
            raise

        self.user, self.token, self.store = user, token, None
        self.is_loading = False
        self._persist()
        return user

    async def fetch_user_store(self, user_id: Id) -> Optional[Shop]:
        """The seller's shop, or None when they have not opened one yet."""
        self.is_loading_store = True
        try:
            data = await self.client.get(f"/store/user/{user_id}")
            shop = Shop.model_validate(data) if data else None
        except ResponseError as exc:
            if exc.status_code == 404:
                logger.info("user %s has no store yet", user_id)
            else:
                logger.error("unexpected error fetching store for user %s: %s", user_id, exc)
            shop = None
        except (ApiError, ValidationError) as exc:
            logger.error("unexpected error fetching store for user %s: %s", user_id, exc)
            shop = None

        self.store = shop
        self.is_loading_store = False
        self._persist()
        return shop

    async def update_store(self) -> Optional[Shop]:
        if self.user is None or self.user.role != Role.PENJUAL or not self.token:
            return None
        return await self.fetch_user_store(self.user.id)

    def set_store(self, shop: Optional[Shop]) -> None:
        self.store = shop
        self._persist()

    def clear_store(self) -> None:
        self.set_store(None)

    def logout(self) -> None:
        self._forget()
        self.error = None
        self.session.clear()

    def clear_error(self) -> None:
        self.error = None

    # ── queries ───────────────────────────────────────────────────────────────

    def is_authenticated(self, now: Optional[float] = None) -> bool:
        exp = token_expiry(self.token)
        if exp is None:
            return False
        return (time.time() if now is None else now) < exp

    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == Role.ADMIN

    def is_penjual(self) -> bool:
        return self.user is not None and self.user.role == Role.PENJUAL

    def is_pembeli(self) -> bool:
        return self.user is not None and self.user.role == Role.PEMBELI

    def has_store(self) -> bool:
        return self.is_penjual() and self.store is not None

    @staticmethod
    def _identity(data: Any) -> tuple[User, str]:
        if not isinstance(data, dict) or not data.get("token"):
            raise ResponseError("Invalid response format")
        try:
            return User.model_validate(data), data["token"]
        except ValidationError as exc:
            raise ResponseError("Invalid response format") from exc
