import logging
from typing import Any, Mapping, Optional

from nitikbatik.auth import AuthStore
from nitikbatik.client import FileField
from nitikbatik.errors import ApiError, FormValidationError, error_message
from nitikbatik.models import Role, Shop
from nitikbatik.navigation import Navigator
from nitikbatik.stores import ShopStore
from nitikbatik.utils import require_fields

logger = logging.getLogger(__name__)

SHOP_REQUIRED_FIELDS = ("name", "description", "whatsapp", "alamat")

CREATE_STORE_PATH = "/penjual/store"


class AuthView:
    """Login, registration and logout, each followed by the right redirect."""

    def __init__(self, auth: AuthStore, navigator: Navigator) -> None:
        self.auth = auth
        self.navigator = navigator
        self.login_error: Optional[str] = None
        self.register_error: Optional[str] = None

    @property
    def error(self) -> Optional[str]:
        return self.auth.error or self.login_error or self.register_error

    @property
    def is_loading(self) -> bool:
        return self.auth.is_loading or (self.auth.is_penjual() and self.auth.is_loading_store)

    def _go(self, path: str) -> None:
        self.navigator.push(path)
        self.navigator.refresh()

    def _seller_home(self) -> str:
        return "/penjual/dashboard" if self.auth.has_store() else CREATE_STORE_PATH

    async def login_with_redirect(self, email: str, password: str) -> None:
        self.login_error = None
        try:
            user = await self.auth.login(email, password)
        except ApiError as exc:
            self.login_error = error_message(exc, "Gagal Login")
            return

        if user.role == Role.ADMIN:
            self._go("/admin/dashboard")
        elif user.role == Role.PENJUAL:
            if self.auth.is_loading_store:
                # store_loaded() finishes the redirect
                return
            self._go(self._seller_home())
        else:
            self._go("/")

    def store_loaded(self) -> None:
        """Finish a seller's post-login redirect once their shop lookup is done."""
        if not self.auth.is_penjual() or self.auth.is_loading_store:
            return
        if self.navigator.current_path in ("/login", "/"):
            self.navigator.push(self._seller_home())

    async def register_with_redirect(self, name: str, email: str, password: str) -> None:
        self.register_error = None
        try:
            await self.auth.register(name, email, password)
        except ApiError as exc:
            self.register_error = error_message(exc, "Gagal Registrasi")
            return
        # a new seller never has a shop yet
        self._go(CREATE_STORE_PATH)

    def logout_with_redirect(self) -> None:
        self.auth.logout()
        self._go("/login")

    def create_store_and_redirect(self, shop: Shop) -> None:
        self.auth.set_store(shop)
        self._go("/penjual/dashboard")

    def protect_route(self, required_role: Optional[str] = None) -> bool:
        user = self.auth.user
        if not self.auth.is_authenticated():
            self.navigator.push("/login")
            return False

        if required_role and (user is None or user.role != required_role):
            if user is not None and user.role == Role.ADMIN:
                self.navigator.push("/admin/dashboard")
            elif user is not None and user.role == Role.PENJUAL:
                if not self.auth.is_loading_store:
                    self.navigator.push(self._seller_home())
            else:
                self.navigator.push("/")
            return False

        if required_role == Role.PENJUAL and not self.auth.is_loading_store \
                and not self.auth.has_store():
            self.navigator.push(CREATE_STORE_PATH)
            return False
        return True

    def needs_to_create_store(self) -> bool:
        return self.auth.is_penjual() and not self.auth.is_loading_store \
            and not self.auth.has_store()

    def clear_error(self) -> None:
        self.auth.clear_error()
        self.login_error = None
        self.register_error = None


class StoreFormView:
    """Create and edit form for the seller's shop."""

    def __init__(self, shops: ShopStore, navigator: Navigator) -> None:
        self.shops = shops
        self.navigator = navigator
        self.form_error: Optional[str] = None

    @property
    def loading(self) -> bool:
        return self.shops.loading

    @property
    def error(self) -> Optional[str]:
        return self.form_error or self.shops.error

    def _validate(self, data: Mapping[str, Any]) -> bool:
        try:
            require_fields(data, SHOP_REQUIRED_FIELDS)
        except FormValidationError as exc:
            self.form_error = exc.message
            return False
        return True

    async def create_store_redirect(self, data: Mapping[str, Any]) -> Optional[Shop]:
        self.form_error = None
        if not self._validate(data):
            return None
        try:
            shop = await self.shops.create(data)
        except ApiError as exc:
            self.form_error = error_message(exc, "Gagal Membuat Toko")
            return None
        self.navigator.push("/penjual/dashboard")
        self.navigator.refresh()
        return shop

    async def load_for_edit(self) -> Optional[Shop]:
        shop = self.shops.current_store()
        if shop is not None:
            return shop
        user = self.shops.auth.user
        if user is None:
            return None
        try:
            return await self.shops.fetch_with_retry(user.id)
        except ApiError as exc:
            self.form_error = error_message(exc, "Failed to fetch store")
            return None

    async def save(self, data: Mapping[str, Any]) -> Optional[Shop]:
        self.form_error = None
        store_id = self.shops.store_id()
        if store_id is None:
            self.form_error = "Store not found"
            return None
        if not self._validate(data):
            return None
        try:
            shop = await self.shops.update(store_id, data)
        except ApiError as exc:
            self.form_error = error_message(exc, "Gagal Update Toko")
            return None
        self.navigator.push("/penjual/dashboard")
        return shop

    async def upload_asset(self, file: FileField) -> Optional[str]:
        """Upload an avatar or banner image, returning its path."""
        try:
            return await self.shops.client.upload("/upload", file, field_name="image")
        except ApiError as exc:
            self.form_error = error_message(exc, "Failed to upload image")
            return None
