import logging
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from nitikbatik.client import ApiClient
from nitikbatik.errors import ApiError, ResponseError, error_message
from nitikbatik.models import Pagination

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ResourceStore(Generic[M]):
    """One resource's list/detail state plus the calls that fill it.

    List and detail fetches never raise: a failure lands in `error` and the
    previously loaded `items` stay. Each fetch takes a ticket; a response
    whose ticket is no longer the latest is dropped.
    """

    model: type[M]
    items_key = "items"
    default_limit = 12

    def __init__(self, client: ApiClient) -> None:
        self.client = client
        self.items: list[M] = []
        self.current: Optional[M] = None
        self.pagination = Pagination(limit=self.default_limit)
        self.loading = False
        self.error: Optional[str] = None
        self._issued = 0

    # ── request tickets ──────────────────────────────────────────────────────

    def _begin(self) -> int:
        self._issued += 1
        self.loading = True
        self.error = None
        return self._issued

    def _is_latest(self, ticket: int) -> bool:
        if ticket != self._issued:
            logger.debug("%s: dropping stale response #%d (latest #%d)",
                         type(self).__name__, ticket, self._issued)
            return False
        return True

    # ── reads ─────────────────────────────────────────────────────────────────

    async def _fetch_list(self, path: str, params: dict[str, Any], fallback: str) -> bool:
        ticket = self._begin()
        try:
            data = await self.client.get(path, params=params)
            items = self._parse_items(data)
            pagination = self._parse_pagination(data, params)
        except ApiError as exc:
            if self._is_latest(ticket):
                self.error = error_message(exc, fallback)
                self.loading = False
            return False
        if self._is_latest(ticket):
            self.items = items
            self.pagination = pagination
            self.loading = False
            self.error = None
            return True
        return False

    async def _fetch_one(self, path: str, fallback: str) -> Optional[M]:
        ticket = self._begin()
        try:
            data = await self.client.get(path)
            item = self._parse(data)
        except ApiError as exc:
            if self._is_latest(ticket):
                self.current = None
                self.error = error_message(exc, fallback)
                self.loading = False
            return None
        if self._is_latest(ticket):
            self.current = item
            self.loading = False
        return item

    def _parse(self, data: Any) -> M:
        try:
            return self.model.model_validate(data)
        except ValidationError as exc:
            raise ResponseError("Invalid response format") from exc

    def _parse_items(self, data: Any) -> list[M]:
        if isinstance(data, list):
            raw = data
        elif isinstance(data, dict):
            raw = data.get(self.items_key, data.get("items")) or []
        else:
            raw = []
        if not isinstance(raw, list):
            raise ResponseError("Invalid response format")
        return [self._parse(entry) for entry in raw]

    def _parse_pagination(self, data: Any, params: dict[str, Any]) -> Pagination:
        raw = data.get("pagination") if isinstance(data, dict) else None
        if not raw:
            return Pagination(page=int(params.get("page", 1)),
                              limit=int(params.get("limit", self.default_limit)))
        try:
            return Pagination.model_validate(raw)
        except ValidationError as exc:
            raise ResponseError("Invalid response format") from exc

    # ── writes ────────────────────────────────────────────────────────────────

    async def _mutate(self, fallback: str, method: str, path: str, **kwargs: Any) -> Any:
        """Run a create/update/delete; record the failure, then re-raise it."""
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

    # ── local state ───────────────────────────────────────────────────────────

    def set_page(self, page: int) -> None:
        self.pagination = self.pagination.model_copy(update={"page": page})

    def clear_error(self) -> None:
        self.error = None

    def clear(self) -> None:
        self._issued += 1   # anything still in flight is now stale
        self.items = []
        self.current = None
        self.error = None
        self.loading = False
        self.pagination = Pagination(limit=self.default_limit)


def list_params(page: int, limit: int, search: str = "", search_key: str = "search") -> dict[str, Any]:
    params: dict[str, Any] = {"page": str(page), "limit": str(limit)}
    if search and search.strip():
        params[search_key] = search.strip()
    return params
