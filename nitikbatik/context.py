import asyncio
import time
from typing import Any, Optional

import httpx

from nitikbatik.account import AuthView, StoreFormView
from nitikbatik.admin import ArticleManagerView, DashboardView
from nitikbatik.auth import AuthStore
from nitikbatik.client import ApiClient
from nitikbatik.config import Settings, load_settings
from nitikbatik.guard import GuardDecision, recheck
from nitikbatik.models import Id
from nitikbatik.navigation import Navigator
from nitikbatik.retry import Sleep
from nitikbatik.session import Clock, CookieJar, SessionStore
from nitikbatik.stores import ArticleStore, CategoryStore, ProductStore, ShopStore, UserStore
from nitikbatik.views import (
    CatalogView,
    CategoryCatalogView,
    LatestProductsView,
    ProductCategoriesView,
    ProductDetailView,
    ProductManagementView,
    StoreProductsView,
)


class AppContext:
    """Everything one browsing session owns: cookies, client, stores.

    Views built from the same context share its stores, so a mutation made
    through one view is visible to the next fetch in another.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        jar: Optional[CookieJar] = None,
        navigator: Optional[Navigator] = None,
        clock: Clock = time.time,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings or load_settings()
        self.clock = clock
        self.sleep = sleep
        self.jar = jar or CookieJar(clock)
        self.session = SessionStore(self.jar, self.settings, clock)
        self.navigator = navigator or Navigator()
        self.client = ApiClient(self.settings, self.session, self.navigator, transport)

        self.auth = AuthStore(self.client, self.session)
        self.shops = ShopStore(self.client, self.auth, sleep)
        self.products = ProductStore(self.client)
        self.articles = ArticleStore(self.client)
        self.users = UserStore(self.client)
        self.categories = CategoryStore(self.client)
        self.auth.rehydrate()

    @classmethod
    def from_cookie(cls, raw_cookie: Optional[str], settings: Settings, **kwargs: Any) -> "AppContext":
        """A context whose session is the one carried by an incoming request."""
        context = cls(settings, **kwargs)
        if raw_cookie:
            context.jar.set(settings.session_cookie_name, raw_cookie,
                            settings.session_cookie_max_age)
            context.auth.rehydrate()
        return context

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "AppContext":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def guard(self, path: str) -> GuardDecision:
        return await recheck(self.auth, self.navigator, path,
                             delay=self.settings.rehydrate_delay, sleep=self.sleep,
                             login_path=self.settings.login_path, now=self.clock())

    # ── views ─────────────────────────────────────────────────────────────────

    def product_management(self, **kwargs: Any) -> ProductManagementView:
        kwargs.setdefault("limit", self.settings.page_limit)
        return ProductManagementView(self.auth, self.shops, self.products, self.categories, **kwargs)

    def store_products(self, store_id: Optional[Id], **kwargs: Any) -> StoreProductsView:
        kwargs.setdefault("limit", self.settings.page_limit)
        return StoreProductsView(self.shops, self.products, store_id, **kwargs)

    def catalog(self, **kwargs: Any) -> CatalogView:
        kwargs.setdefault("limit", self.settings.catalog_limit)
        return CatalogView(self.products, **kwargs)

    def category_catalog(self, slug: str, **kwargs: Any) -> CategoryCatalogView:
        kwargs.setdefault("limit", self.settings.catalog_limit)
        return CategoryCatalogView(self.products, slug, **kwargs)

    def latest_products(self) -> LatestProductsView:
        return LatestProductsView(self.products, attempts=self.settings.latest_retry_attempts,
                                  delay=self.settings.latest_retry_delay, sleep=self.sleep)

    def product_detail(self, slug: Optional[str] = None) -> ProductDetailView:
        return ProductDetailView(self.products, slug)

    def product_categories(self) -> ProductCategoriesView:
        return ProductCategoriesView(self.categories)

    def auth_view(self) -> AuthView:
        return AuthView(self.auth, self.navigator)

    def store_form(self) -> StoreFormView:
        return StoreFormView(self.shops, self.navigator)

    def dashboard(self) -> DashboardView:
        return DashboardView(self.articles, self.users)

    def article_manager(self) -> ArticleManagerView:
        return ArticleManagerView(self.articles, limit=self.settings.admin_limit)
