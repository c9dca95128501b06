"""
Catalog view models: screen-ready state combined from the stores.

Each listing keeps a "fetched for identity" marker so that repeated mounts
with the same store id / search term / page issue a single request; the
marker is set before the request is awaited, so two mounts racing on the
event loop still produce one fetch.
"""

import asyncio
import logging
from datetime import timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Hashable, Mapping, Optional, Sequence

from nitikbatik.auth import AuthStore
from nitikbatik.client import FileField
from nitikbatik.errors import FormValidationError
from nitikbatik.models import Category, Id, Pagination, Product, Role, Shop
from nitikbatik.retry import Sleep, retry_async
from nitikbatik.stores import CategoryStore, ProductStore, ShopStore
from nitikbatik.utils import format_rupiah, require_fields

logger = logging.getLogger(__name__)

PRODUCT_REQUIRED_FIELDS = ("name", "harga", "category_id")


class ListingView:
    """Paged, searchable product listing over the shared ProductStore."""

    def __init__(self, products: ProductStore, page: int = 1, limit: int = 12,
                 search: str = "", auto_fetch: bool = True) -> None:
        self.products = products
        self.page = page
        self.limit = limit
        self.search_query = search
        self.auto_fetch = auto_fetch
        self.is_searching = False
        self.has_fetched = False
        self._fetched_for: Optional[Hashable] = None

    # ── hooks for subclasses ──────────────────────────────────────────────────

    def ready(self) -> bool:
        return True

    def identity(self) -> Hashable:
        return (self.search_query, self.page)

    async def _load(self, page: int, search: str) -> None:
        raise NotImplementedError

    # ── state ─────────────────────────────────────────────────────────────────

    @property
    def items(self) -> list[Product]:
        return list(self.products.items)

    @property
    def loading(self) -> bool:
        return self.products.loading

    @property
    def error(self) -> Optional[str]:
        return self.products.error

    @property
    def pagination(self) -> Pagination:
        return self.products.pagination

    @property
    def has_products(self) -> bool:
        return len(self.items) > 0

    @property
    def is_empty(self) -> bool:
        return (not self.loading and not self.is_searching
                and len(self.items) == 0 and self.error is None)

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def current_page(self) -> int:
        return self.pagination.page

    @property
    def total_pages(self) -> int:
        return self.pagination.total_pages

    @property
    def total_items(self) -> int:
        return self.pagination.total_items

    @property
    def has_next_page(self) -> bool:
        return self.pagination.page < self.pagination.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.pagination.page > 1

    # ── actions ───────────────────────────────────────────────────────────────

    async def mount(self) -> None:
        """Initial fetch; a no-op when this identity was already fetched."""
        if not self.auto_fetch or not self.ready():
            return
        identity = self.identity()
        if self._fetched_for == identity:
            return
        self._fetched_for = identity
        await self._load(self.page, self.search_query)
        self.has_fetched = True

    async def fetch(self, page: Optional[int] = None, search: Optional[str] = None) -> None:
        if not self.ready():
            logger.warning("%s: not ready, skipping fetch", type(self).__name__)
            return
        self.page = self.page if page is None else page
        self.search_query = self.search_query if search is None else search
        self._fetched_for = self.identity()
        await self._load(self.page, self.search_query)
        self.has_fetched = True

    async def refresh(self) -> None:
        await self.fetch(self.page, self.search_query)

    async def search(self, term: str) -> None:
        """Replace the list with page 1 of the results for `term`."""
        self.is_searching = True
        try:
            await self.fetch(1, term)
        finally:
            self.is_searching = False

    async def clear_search(self) -> None:
        await self.search("")

    async def change_page(self, page: int) -> None:
        if page < 1 or (page == self.pagination.page and self.has_fetched):
            return
        await self.fetch(page, self.search_query)

    async def next_page(self) -> None:
        if self.has_next_page:
            await self.change_page(self.pagination.page + 1)

    async def prev_page(self) -> None:
        if self.has_prev_page:
            await self.change_page(self.pagination.page - 1)

    def clear_error(self) -> None:
        self.products.clear_error()

    @staticmethod
    def format_price(price: Any) -> str:
        return format_rupiah(price)


# ── Seller dashboard ─────────────────────────────────────────────────────────

class ProductManagementView(ListingView):
    """The seller's own products, with create/update/delete."""

    def __init__(self, auth: AuthStore, shops: ShopStore, products: ProductStore,
                 categories: Optional[CategoryStore] = None, **kwargs: Any) -> None:
        super().__init__(products, **kwargs)
        self.auth = auth
        self.shops = shops
        self.categories = categories
        self.delete_loading: Optional[str] = None

    @property
    def store_info(self) -> Optional[Shop]:
        return self.shops.current_store()

    @property
    def store_id(self) -> Optional[Id]:
        return self.shops.store_id()

    @property
    def can_manage_products(self) -> bool:
        return (self.auth.user is not None and self.auth.user.role == Role.PENJUAL
                and self.shops.has_store())

    @property
    def loading(self) -> bool:
        return self.shops.loading or self.products.loading

    def ready(self) -> bool:
        return self.store_id is not None and self.can_manage_products

    def identity(self) -> Hashable:
        return (self.store_id, self.search_query, self.page)

    async def _load(self, page: int, search: str) -> None:
        await self.products.fetch_by_store(self.store_id, page, self.limit, search)

    def validate(self, data: Mapping[str, Any]) -> None:
        require_fields(data, PRODUCT_REQUIRED_FIELDS)
        if self.categories is not None and not self.categories.is_known(data["category_id"]):
            raise FormValidationError(["category_id"])

    async def create_product(self, data: Mapping[str, Any],
                             images: Optional[Sequence[FileField]] = None) -> Any:
        self.validate(data)
        created = await self.products.create(data, images)
        await self.refresh()
        return created

    async def update_product(self, slug: str, data: Mapping[str, Any],
                             images: Optional[Sequence[FileField]] = None) -> Any:
        self.validate(data)
        updated = await self.products.update(slug, data, images)
        await self.refresh()
        return updated

    async def delete_product(self, slug: str) -> bool:
        self.delete_loading = slug
        try:
            await self.products.delete(slug)
        finally:
            self.delete_loading = None
        await self.refresh()
        return True

    def product_stats(self) -> dict[str, int]:
        items = self.items
        return {
            "total_products": len(items),
            "in_stock": sum(1 for p in items if p.stock > 0),
            "low_stock": sum(1 for p in items if 0 < p.stock <= 10),
            "out_of_stock": sum(1 for p in items if p.stock == 0),
        }


# ── Public storefront ────────────────────────────────────────────────────────

class StoreProductsView(ListingView):
    """A shop's public page: its profile plus its product listing."""

    def __init__(self, shops: ShopStore, products: ProductStore,
                 store_id: Optional[Id], **kwargs: Any) -> None:
        super().__init__(products, **kwargs)
        self.shops = shops
        self.store_id = store_id

    def ready(self) -> bool:
        return bool(self.store_id)

    def identity(self) -> Hashable:
        return (self.store_id, self.search_query, self.page)

    @property
    def loading(self) -> bool:
        return self.products.loading or self.is_searching or not self.ready()

    @property
    def store_data(self) -> Shop:
        shop = self.shops.public
        if shop is None or str(shop.id) != str(self.store_id):
            return Shop()
        return shop

    @property
    def is_store_data_loaded(self) -> bool:
        shop = self.store_data
        return shop.id is not None and bool(shop.name)

    def set_store_id(self, store_id: Optional[Id]) -> None:
        if store_id != self.store_id:
            self.store_id = store_id
            self.search_query = ""
            self.page = 1
            self.has_fetched = False

    async def _load(self, page: int, search: str) -> None:
        if not self.is_store_data_loaded:
            await asyncio.gather(
                self.shops.fetch_public(self.store_id),
                self.products.fetch_by_store(self.store_id, page, self.limit, search),
            )
        else:
            await self.products.fetch_by_store(self.store_id, page, self.limit, search)


# ── "All products" listings ──────────────────────────────────────────────────

class ArrangeOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    NAME = "name"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    STORE_NAME = "store_name"
    CATEGORY = "category"


def _timestamp(product: Product) -> float:
    created = product.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created.timestamp()


def arrange_products(products: Sequence[Product], order: ArrangeOrder) -> list[Product]:
    """Reorder the products at hand. Only the loaded page is arranged, never
    the whole catalog."""
    if order in (ArrangeOrder.NEWEST, ArrangeOrder.OLDEST):
        dated = [p for p in products if p.created_at is not None]
        undated = [p for p in products if p.created_at is None]
        dated.sort(key=_timestamp, reverse=order == ArrangeOrder.NEWEST)
        return dated + undated
    if order == ArrangeOrder.NAME:
        return sorted(products, key=lambda p: p.name.casefold())
    if order == ArrangeOrder.PRICE_LOW:
        return sorted(products, key=lambda p: p.harga)
    if order == ArrangeOrder.PRICE_HIGH:
        return sorted(products, key=lambda p: p.harga, reverse=True)
    if order == ArrangeOrder.STORE_NAME:
        return sorted(products, key=lambda p: (p.store_name or "").casefold())
    if order == ArrangeOrder.CATEGORY:
        return sorted(products, key=lambda p: (p.category_name or "").casefold())
    return list(products)


class CatalogView(ListingView):
    def __init__(self, products: ProductStore, order: ArrangeOrder = ArrangeOrder.NEWEST,
                 limit: int = 40, **kwargs: Any) -> None:
        super().__init__(products, limit=limit, **kwargs)
        self.order = ArrangeOrder(order)

    @property
    def items(self) -> list[Product]:
        return arrange_products(self.products.items, self.order)

    def arrange(self, order: ArrangeOrder) -> None:
        self.order = ArrangeOrder(order)

    async def _load(self, page: int, search: str) -> None:
        await self.products.fetch_all_public(page, self.limit, search)

    def available_categories(self) -> list[dict[str, Any]]:
        found: dict[str, dict[str, Any]] = {}
        for product in self.items:
            if product.category_slug and product.category_name:
                entry = found.setdefault(product.category_slug, {
                    "slug": product.category_slug,
                    "name": product.category_name,
                    "count": 0,
                })
                entry["count"] += 1
        return sorted(found.values(), key=lambda c: c["count"], reverse=True)

    def stats(self) -> dict[str, Any]:
        items = self.items
        prices = [p.harga for p in items]
        average = sum(prices, Decimal("0")) / len(prices) if prices else Decimal("0")
        return {
            "total_products": len(items),
            "avg_price": average,
            "price_ranges": {
                "under_100k": sum(1 for h in prices if h < 100_000),
                "100k_500k": sum(1 for h in prices if 100_000 <= h < 500_000),
                "500k_1m": sum(1 for h in prices if 500_000 <= h < 1_000_000),
                "over_1m": sum(1 for h in prices if h >= 1_000_000),
            },
            "categories": self.available_categories(),
        }


class CategoryCatalogView(CatalogView):
    """All products of one category, e.g. /store/products/category/batik-parang."""

    def __init__(self, products: ProductStore, slug: str, **kwargs: Any) -> None:
        super().__init__(products, **kwargs)
        self.slug = slug

    def ready(self) -> bool:
        return bool(self.slug)

    def identity(self) -> Hashable:
        return (self.slug, self.page)

    def set_slug(self, slug: str) -> None:
        if slug != self.slug:
            self.slug = slug
            self.page = 1
            self.has_fetched = False
            self.products.clear()

    async def _load(self, page: int, search: str) -> None:
        await self.products.fetch_by_category(self.slug, page, self.limit)


# ── Landing page ─────────────────────────────────────────────────────────────

class LatestProductsView:
    """Newest products, retried while the backend answers with nothing."""

    def __init__(self, products: ProductStore, attempts: int = 3, delay: float = 1.0,
                 sleep: Sleep = asyncio.sleep) -> None:
        self.products = products
        self.attempts = attempts
        self.delay = delay
        self._sleep = sleep
        self.attempts_made = 0
        self.fetch_complete = False
        self._started = False

    @property
    def items(self) -> list[Product]:
        return list(self.products.items) if self.fetch_complete else []

    @property
    def loading(self) -> bool:
        return self._started and not self.fetch_complete

    @property
    def error(self) -> Optional[str]:
        return self.products.error

    async def load(self) -> list[Product]:
        if self._started:
            return self.items
        self._started = True
        result = await retry_async(
            self.products.fetch_latest,
            attempts=self.attempts,
            delay=self.delay,
            # an empty answer is retried, a failed request is not
            retry_if=lambda items: not items and self.products.error is None,
            sleep=self._sleep,
            label="latest products",
        )
        self.attempts_made = result.attempts
        self.fetch_complete = True
        return list(result.value or [])


# ── Detail & categories ──────────────────────────────────────────────────────

class ProductDetailView:
    def __init__(self, products: ProductStore, slug: Optional[str] = None) -> None:
        self.products = products
        self.slug = slug

    @property
    def product(self) -> Optional[Product]:
        return self.products.current

    @property
    def loading(self) -> bool:
        return self.products.loading

    @property
    def error(self) -> Optional[str]:
        return self.products.error

    @property
    def has_product(self) -> bool:
        return self.product is not None

    async def fetch(self, slug: Optional[str] = None) -> Optional[Product]:
        target = slug or self.slug
        if not target:
            logger.warning("product detail: slug is required")
            return None
        return await self.products.fetch_one(target)

    async def fetch_public(self, slug: Optional[str] = None) -> Optional[Product]:
        target = slug or self.slug
        if not target:
            logger.warning("product detail: slug is required")
            return None
        return await self.products.fetch_public_one(target)

    def clear_error(self) -> None:
        self.products.clear_error()


class ProductCategoriesView:
    def __init__(self, categories: CategoryStore) -> None:
        self.store = categories

    @property
    def categories(self) -> list[Category]:
        return list(self.store.items)

    @property
    def options(self) -> list[Category]:
        return self.store.options()

    async def fetch(self) -> list[Category]:
        return await self.store.fetch()
