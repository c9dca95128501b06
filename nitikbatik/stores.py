import asyncio
import logging
from typing import Any, Mapping, Optional, Sequence

from pydantic import ValidationError

from nitikbatik.auth import AuthStore
from nitikbatik.client import ApiClient, FileField
from nitikbatik.errors import ApiError, ResponseError, error_message
from nitikbatik.models import (
    PRODUCT_CATEGORIES,
    Article,
    Category,
    Id,
    Product,
    Role,
    Shop,
    User,
)
from nitikbatik.retry import Sleep, retry_async
from nitikbatik.store import ResourceStore, list_params

logger = logging.getLogger(__name__)


def _multipart(data: Mapping[str, Any]) -> dict[str, str]:
    return {k: str(v) for k, v in data.items() if v is not None}


# ── Products ─────────────────────────────────────────────────────────────────

class ProductStore(ResourceStore[Product]):
    model = Product
    items_key = "products"

    async def fetch_by_store(self, store_id: Optional[Id], page: int = 1,
                             limit: int = 12, search: str = "") -> bool:
        if not store_id:
            logger.error("fetch_by_store: store_id is required")
            return False
        return await self._fetch_list(f"/store/{store_id}/products",
                                      list_params(page, limit, search),
                                      "Failed to fetch products")

    async def fetch_all_public(self, page: int = 1, limit: int = 12, search: str = "") -> bool:
        return await self._fetch_list("/products", list_params(page, limit, search),
                                      "Failed to fetch products")

    async def fetch_by_category(self, slug: str, page: int = 1, limit: int = 12) -> bool:
        return await self._fetch_list(f"/products/category/{slug}", list_params(page, limit),
                                      "Failed to fetch products")

    async def fetch_latest(self) -> list[Product]:
        """Newest products for the landing page; empty on failure."""
        ticket = self._begin()
        try:
            data = await self.client.get("/latest-products")
            items = self._parse_items(data)
        except ApiError as exc:
            if self._is_latest(ticket):
                self.error = error_message(exc, "Failed to fetch latest products")
                self.loading = False
            return []
        if self._is_latest(ticket):
            self.items = items
            self.loading = False
        return items

    async def fetch_one(self, slug: str) -> Optional[Product]:
        return await self._fetch_one(f"/product/detail/{slug}", "Failed to fetch product")

    async def fetch_public_one(self, slug: str) -> Optional[Product]:
        return await self._fetch_one(f"/product/{slug}", "Failed to fetch product")

    async def create(self, data: Mapping[str, Any],
                     images: Optional[Sequence[FileField]] = None) -> Any:
        files = [("images", image) for image in images or []]
        return await self._mutate("Failed to create product", "POST", "/product",
                                  data=_multipart(data), files=files or None)

    async def update(self, slug: str, data: Mapping[str, Any],
                     images: Optional[Sequence[FileField]] = None) -> Any:
        if images:
            return await self._mutate("Failed to update product", "PUT", f"/product/{slug}",
                                      data=_multipart(data),
                                      files=[("images", image) for image in images])
        return await self._mutate("Failed to update product", "PUT", f"/product/{slug}",
                                  json=dict(data))

    async def delete(self, slug: str) -> bool:
        await self._mutate("Failed to delete product", "DELETE", f"/product/{slug}")
        self.items = [p for p in self.items if p.slug != slug]
        return True


# ── Articles ─────────────────────────────────────────────────────────────────

class ArticleStore(ResourceStore[Article]):
    model = Article
    items_key = "articles"
    default_limit = 10

    async def fetch_list(self, page: int = 1, limit: int = 10, search: str = "") -> bool:
        return await self._fetch_list("/articles", list_params(page, limit, search),
                                      "Failed to fetch articles")

    async def search(self, query: str, page: int = 1, limit: int = 10) -> bool:
        params = {"q": query, "page": str(page), "limit": str(limit)}
        return await self._fetch_list("/articles/search", params, "Failed to search articles")

    async def fetch_by_slug(self, slug: str) -> Optional[Article]:
        self.current = None
        return await self._fetch_one(f"/articles/slug/{slug}", "Failed to fetch article")

    async def create(self, data: Mapping[str, Any]) -> Any:
        return await self._mutate("Failed to create article", "POST", "/articles", json=dict(data))

    async def update(self, article_id: Id, data: Mapping[str, Any]) -> Any:
        return await self._mutate("Failed to update article", "PUT", f"/articles/{article_id}",
                                  json=dict(data))

    async def delete(self, article_id: Id) -> bool:
        await self._mutate("Failed to delete article", "DELETE", f"/articles/{article_id}")
        return True

    async def upload_image(self, file: FileField) -> str:
        return await self.client.upload("/upload", file, field_name="image")


# ── Users ────────────────────────────────────────────────────────────────────

class UserStore(ResourceStore[User]):
    model = User
    items_key = "users"
    default_limit = 10

    async def fetch_list(self, page: int = 1, limit: int = 10, search: str = "") -> bool:
        return await self._fetch_list("/all-users", list_params(page, limit, search),
                                      "Failed to fetch users")


# ── Categories ───────────────────────────────────────────────────────────────

class CategoryStore(ResourceStore[Category]):
    model = Category

    async def fetch(self) -> list[Category]:
        ticket = self._begin()
        try:
            data = await self.client.get("/product-category")
            items = self._parse_items(data)
        except ApiError as exc:
            if self._is_latest(ticket):
                self.error = error_message(exc, "Failed to fetch product categories")
                self.loading = False
            return list(self.items)
        if self._is_latest(ticket):
            self.items = items
            self.loading = False
        return items

    def options(self) -> list[Category]:
        """The fetched categories, or the fixed list until they have loaded."""
        return list(self.items) if self.items else list(PRODUCT_CATEGORIES)

    def is_known(self, category_id: Any) -> bool:
        return any(str(c.id) == str(category_id) for c in self.options())


# ── Shops ────────────────────────────────────────────────────────────────────

class ShopStore:
    """The logged-in seller's shop, kept in step with the auth store.

    Not a ResourceStore: a seller owns at most one shop, so there is no list.
    """

    def __init__(self, client: ApiClient, auth: AuthStore, sleep: Sleep = asyncio.sleep) -> None:
        self.client = client
        self.auth = auth
        self.store: Optional[Shop] = None
        self.public: Optional[Shop] = None
        self.loading = False
        self.error: Optional[str] = None
        self._sleep = sleep

    def current_store(self) -> Optional[Shop]:
        return self.store or self.auth.store

    def store_id(self) -> Optional[Id]:
        shop = self.current_store()
        return shop.id if shop else None

    def has_store(self) -> bool:
        return self.store_id() is not None

    def is_valid(self) -> bool:
        shop = self.current_store()
        return shop is not None and shop.id is not None and bool(shop.name.strip())

    async def _call(self, fallback: str, method: str, path: str, **kwargs: Any) -> Any:
        self.loading = True
        self.error = None
        try:
            data = await self.client.request(method, path, **kwargs)
        except ApiError as exc:
            self.error = error_message(exc, fallback)
            self.loading = False
            raise
        self.loading = False
        return data

    @staticmethod
    def _shop(data: Any) -> Shop:
        try:
            return Shop.model_validate(data)
        except ValidationError as exc:
            raise ResponseError("Invalid response format") from exc

    # ── writes ────────────────────────────────────────────────────────────────

    async def create(self, data: Mapping[str, Any]) -> Shop:
        if self.auth.has_store() or self.store is not None:
            self.error = "Seller already has a store"
            raise ResponseError(self.error, status_code=409, detail=self.error)
        shop = self._shop(await self._call("Gagal Membuat Toko", "POST", "/store", json=dict(data)))
        self.store = shop
        self.auth.set_store(shop)
        logger.info("store %s created and synced to auth", shop.id)
        return shop

    async def update(self, store_id: Id, data: Mapping[str, Any]) -> Shop:
        shop = self._shop(await self._call("Gagal Update Toko", "PUT", f"/store/{store_id}",
                                           json=dict(data)))
        self.store = shop
        self.auth.set_store(shop)
        return shop

    async def delete(self, store_id: Id) -> bool:
        await self._call("Gagal Hapus Toko", "DELETE", f"/store/{store_id}")
        self.store = None
        self.auth.clear_store()
        return True

    # ── reads ─────────────────────────────────────────────────────────────────

    async def fetch_by_user_id(self, user_id: Id) -> Optional[Shop]:
        """404 means the seller has no shop yet; other failures raise."""
        self.loading = True
        self.error = None
        try:
            data = await self.client.get(f"/store/user/{user_id}")
        except ResponseError as exc:
            if exc.status_code == 404:
                logger.info("no store for user %s (404)", user_id)
                self.store = None
                self.loading = False
                self.auth.clear_store()
                return None
            self.error = error_message(exc, "Failed to fetch store")
            self.loading = False
            self.store = None
            raise
        except ApiError as exc:
            self.error = error_message(exc, "Failed to fetch store")
            self.loading = False
            self.store = None
            raise

        self.loading = False
        if not data:
            self.store = None
            return None
        self.store = self._shop(data)
        self.auth.set_store(self.store)
        return self.store

    async def fetch_with_retry(self, user_id: Id, max_retries: int = 3) -> Optional[Shop]:
        result = await retry_async(
            lambda: self.fetch_by_user_id(user_id),
            attempts=max_retries,
            delay=1.0,
            retry_on=(ApiError,),
            sleep=self._sleep,
            label=f"fetch store for user {user_id}",
        )
        return result.value

    async def fetch_public(self, store_id: Id) -> Optional[Shop]:
        """A shop's public profile, for its storefront page."""
        try:
            data = await self.client.get(f"/store/{store_id}")
            self.public = self._shop(data)
        except ApiError as exc:
            self.error = error_message(exc, "Failed to fetch store")
            self.public = None
        return self.public

    async def refresh(self) -> None:
        user = self.auth.user
        if user is None or user.role != Role.PENJUAL:
            logger.info("cannot refresh store: no seller logged in")
            return
        try:
            await self.fetch_by_user_id(user.id)
        except ApiError as exc:
            logger.error("error refreshing store: %s", exc)

    async def initialize(self) -> None:
        user = self.auth.user
        if user is not None and user.role == Role.PENJUAL and self.store is None:
            try:
                await self.fetch_by_user_id(user.id)
            except ApiError as exc:
                logger.info("could not initialize store: %s", exc)

    def sync_with_auth(self) -> None:
        self.store = self.auth.store

    def clear_error(self) -> None:
        self.error = None

    def clear(self) -> None:
        self.store = None
        self.error = None
        self.loading = False
        self.auth.clear_store()
