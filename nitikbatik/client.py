"""
Single point of HTTP access to the NitikBatik REST backend.

Every call carries the persisted session token (raw, no `Bearer` scheme),
and every failure comes back as one of the classified errors in
`nitikbatik.errors`. A 401 also logs the user out and sends them to the
login page, whatever the caller does with the error.
"""

import logging
from typing import Any, Callable, Mapping, Optional, Sequence

import httpx
from pydantic import ValidationError

from nitikbatik.config import Settings
from nitikbatik.errors import (
    TIMEOUT_MESSAGE,
    NetworkError,
    RequestSetupError,
    ResponseError,
)
from nitikbatik.models import Envelope
from nitikbatik.navigation import Navigator
from nitikbatik.session import SessionStore

logger = logging.getLogger(__name__)

# (filename, content, content_type) as accepted by httpx
FileField = tuple[str, bytes, str]


class ApiClient:
    def __init__(
        self,
        settings: Settings,
        session: SessionStore,
        navigator: Navigator,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.session = session
        self.navigator = navigator
        self._unauthorized_listeners: list[Callable[[], None]] = []
        self._http = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.request_timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def on_unauthorized(self, listener: Callable[[], None]) -> None:
        self._unauthorized_listeners.append(listener)

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── requests ──────────────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        data: Optional[Mapping[str, Any]] = None,
        files: Optional[Sequence[tuple[str, FileField]]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Send a request and return the envelope's `data`."""
        response = await self._send(method, path, params=params, json=json,
                                    data=data, files=files, headers=headers)
        envelope = self._envelope(response)
        if not envelope.status:
            raise ResponseError(
                envelope.message or "Request was not successful",
                status_code=response.status_code,
                detail=envelope.message,
            )
        return envelope.data

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def upload(
        self,
        path: str,
        file: FileField,
        field_name: str = "file",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Post one file as multipart and return the uploaded resource path."""
        return await self.upload_many(path, [file], field_name, extra)

    async def upload_many(
        self,
        path: str,
        files: Sequence[FileField],
        field_name: str = "files",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> str:
        total = sum(len(content) for _, content, _ in files)
        self._log_upload_progress(path, 0, total)
        response = await self._send(
            "POST", path,
            data=_form_fields(extra),
            files=[(field_name, f) for f in files],
        )
        self._log_upload_progress(path, total, total)

        body = self._json(response)
        nested = body.get("data") if isinstance(body.get("data"), dict) else {}
        for source in (body, nested):
            for key in ("url", "path", "imageUrl"):
                if source.get(key):
                    return source[key]
        if isinstance(body.get("data"), str) and body.get("status"):
            return body["data"]
        raise ResponseError(
            body.get("message") or "Failed to upload image",
            status_code=response.status_code,
            detail=body.get("message"),
        )

    # ── internals ─────────────────────────────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        data: Optional[Mapping[str, Any]] = None,
        files: Optional[Sequence[tuple[str, FileField]]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        token = self.session.token()
        if token:
            request_headers["Authorization"] = token
        if files:
            # httpx writes the multipart boundary into its own content type
            request_headers = {k: v for k, v in request_headers.items()
                               if k.lower() != "content-type"}

        logger.debug("%s %s params=%s", method, path, params)
        try:
            response = await self._http.request(
                method, path, params=params, json=json, data=data,
                files=files, headers=request_headers,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            logger.error("could not build request %s %s: %s", method, path, exc)
            raise RequestSetupError(f"Could not build request: {exc}") from exc
        except httpx.TimeoutException as exc:
            logger.error("no response from %s %s: timeout", method, path)
            raise NetworkError(TIMEOUT_MESSAGE, timed_out=True) from exc
        except httpx.TransportError as exc:
            logger.error("no response from %s %s: %s", method, path, exc)
            raise NetworkError() from exc

        if response.is_error:
            self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        detail: Optional[str] = None
        try:
            body = response.json()
            if isinstance(body, dict) and body.get("message"):
                detail = str(body["message"])
        except ValueError:
            body = response.text

        if status == 401:
            logger.warning("unauthorized: clearing session")
            self._force_logout()
        elif status == 403:
            logger.error("access forbidden: %s", body)
        elif status == 404:
            logger.warning("resource not found: %s", body)
        elif status >= 500:
            logger.error("server error: %s", body)
        else:
            logger.error("API error %s: %s", status, body)

        raise ResponseError(
            detail or f"HTTP {status}: {response.reason_phrase}",
            status_code=status,
            detail=detail,
        )

    def _force_logout(self) -> None:
        self.session.clear()
        for listener in self._unauthorized_listeners:
            listener()
        if self.navigator.current_path != self.settings.login_path:
            self.navigator.push(self.settings.login_path)

    def _json(self, response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as exc:
            raise ResponseError("Invalid response format",
                                status_code=response.status_code) from exc
        if not isinstance(body, dict):
            raise ResponseError("Invalid response format", status_code=response.status_code)
        return body

    def _envelope(self, response: httpx.Response) -> Envelope:
        try:
            return Envelope.model_validate(self._json(response))
        except ValidationError as exc:
            raise ResponseError("Invalid response format",
                                status_code=response.status_code) from exc

    @staticmethod
    def _log_upload_progress(path: str, sent: int, total: int) -> None:
        if total:
            logger.info("upload %s: %d%%", path, round(sent * 100 / total))


def _form_fields(values: Optional[Mapping[str, Any]]) -> Optional[dict[str, str]]:
    if not values:
        return None
    return {k: str(v) for k, v in values.items() if v is not None}
