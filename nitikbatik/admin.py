import asyncio
import logging
from typing import Any, Mapping, Optional

from nitikbatik.client import FileField
from nitikbatik.errors import ApiError, error_message
from nitikbatik.models import Article, Id, Pagination
from nitikbatik.stores import ArticleStore, UserStore
from nitikbatik.utils import require_fields, slugify

logger = logging.getLogger(__name__)

ARTICLE_REQUIRED_FIELDS = ("title", "description")


class DashboardView:
    """Admin landing page: article and user totals."""

    def __init__(self, articles: ArticleStore, users: UserStore) -> None:
        self.articles = articles
        self.users = users
        self._loading: Optional[asyncio.Future] = None

    @property
    def statistic(self) -> dict[str, int]:
        return {
            "total_users": len(self.users.items),
            "total_articles": len(self.articles.items),
        }

    async def load(self) -> dict[str, int]:
        if self.articles.items and self.users.items:
            return self.statistic
        if self._loading is None:
            self._loading = asyncio.gather(
                self.articles.fetch_list(1, 100),
                self.users.fetch_list(1, 100),
            )
        try:
            await self._loading
        finally:
            self._loading = None
        return self.statistic


class ArticleManagerView:
    """Admin article table with create, edit and delete."""

    def __init__(self, articles: ArticleStore, limit: int = 10) -> None:
        self.articles = articles
        self.limit = limit
        self.search_query = ""
        self.is_searching = False
        self.action_error: Optional[str] = None
        self._mounted = False

    @property
    def items(self) -> list[Article]:
        return list(self.articles.items)

    @property
    def pagination(self) -> Pagination:
        return self.articles.pagination

    @property
    def loading(self) -> bool:
        return self.articles.loading

    @property
    def error(self) -> Optional[str]:
        return self.action_error or self.articles.error

    @property
    def is_empty(self) -> bool:
        return (not self.loading and not self.is_searching
                and not self.items and self.error is None)

    async def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        await self.articles.fetch_list(1, self.limit)

    async def refresh(self, page: Optional[int] = None) -> None:
        """Re-run the current listing. The store moves to `page` only once
        the fetch succeeds."""
        page = self.pagination.page if page is None else page
        if self.search_query:
            await self.articles.search(self.search_query, page, self.limit)
        else:
            await self.articles.fetch_list(page, self.limit)

    async def search(self, term: str) -> None:
        self.search_query = term.strip()
        self.is_searching = True
        try:
            await self.refresh(1)
        finally:
            self.is_searching = False

    async def change_page(self, page: int) -> None:
        if page < 1 or (self.pagination.total_pages and page > self.pagination.total_pages):
            return
        await self.refresh(page)

    def payload(self, data: Mapping[str, Any], editing: bool = False) -> dict[str, Any]:
        """Validated request body; new articles get a slug from their title."""
        require_fields(data, ARTICLE_REQUIRED_FIELDS)
        body = dict(data)
        if not editing and not body.get("slug"):
            body["slug"] = slugify(body["title"])
        return body

    async def _run(self, fallback: str, call: Any) -> Any:
        self.action_error = None
        try:
            result = await call
        except ApiError as exc:
            self.action_error = error_message(exc, fallback)
            raise
        await self.refresh()
        return result

    async def create(self, data: Mapping[str, Any]) -> Any:
        body = self.payload(data)
        return await self._run("Failed to create article", self.articles.create(body))

    async def update(self, article_id: Id, data: Mapping[str, Any]) -> Any:
        body = self.payload(data, editing=True)
        return await self._run("Failed to update article", self.articles.update(article_id, body))

    async def delete(self, article_id: Id) -> bool:
        return await self._run("Failed to delete article", self.articles.delete(article_id))

    async def upload_image(self, file: FileField) -> Optional[str]:
        try:
            return await self.articles.upload_image(file)
        except ApiError as exc:
            self.action_error = error_message(exc, "Failed to upload image")
            return None
