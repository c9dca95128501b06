"""
Unit tests for the HTTP client: token injection, error classification and
the forced logout on 401.
"""

import httpx
import pytest

from nitikbatik.client import ApiClient
from nitikbatik.context import AppContext
from nitikbatik.errors import (
    NETWORK_MESSAGE,
    TIMEOUT_MESSAGE,
    ErrorKind,
    NetworkError,
    RequestSetupError,
    ResponseError,
    error_message,
)

from conftest import fail, login, ok


def raising(exc_type):
    def handler(request):
        raise exc_type("boom", request=request)
    return handler


def make_context(settings, handler) -> AppContext:
    return AppContext(settings, transport=httpx.MockTransport(handler))


class TestRequest:
    async def test_returns_envelope_data(self, context):
        data = await context.client.get("/products", params={"page": "1", "limit": "2"})
        assert len(data["products"]) == 2
        assert data["pagination"]["totalItems"] == 36

    async def test_token_sent_raw_without_scheme(self, context, backend):
        await login(context, "admin@nitikbatik.id")
        await context.client.get("/all-users")
        sent = backend.calls("GET", "/all-users")[0].headers["Authorization"]
        assert sent == context.auth.token
        assert not sent.startswith("Bearer")

    async def test_no_authorization_header_when_logged_out(self, context, backend):
        await context.client.get("/products")
        assert "Authorization" not in backend.calls("GET", "/products")[0].headers

    async def test_status_false_raises_with_message(self, context, backend):
        backend.override("GET", "/products", lambda r: httpx.Response(
            200, json={"status": False, "message": "Katalog sedang diperbarui"}))
        with pytest.raises(ResponseError, match="Katalog sedang diperbarui") as exc_info:
            await context.client.get("/products")
        assert exc_info.value.detail == "Katalog sedang diperbarui"

    async def test_non_json_body_is_a_response_error(self, context, backend):
        backend.override("GET", "/products", lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(ResponseError, match="Invalid response format"):
            await context.client.get("/products")


class TestErrorClassification:
    async def test_server_message_carried_as_detail(self, context, backend):
        backend.override("GET", "/products", lambda r: fail(500, "Database down"))
        with pytest.raises(ResponseError) as exc_info:
            await context.client.get("/products")
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "Database down"
        assert exc_info.value.kind == ErrorKind.RESPONSE

    async def test_status_without_body_message(self, context, backend):
        backend.override("GET", "/products", lambda r: httpx.Response(503, text="unavailable"))
        with pytest.raises(ResponseError, match="HTTP 503: Service Unavailable") as exc_info:
            await context.client.get("/products")
        assert exc_info.value.detail is None

    async def test_unreachable_server_is_a_network_error(self, settings):
        async with make_context(settings, raising(httpx.ConnectError)) as ctx:
            with pytest.raises(NetworkError, match="cannot reach the API server") as exc_info:
                await ctx.client.get("/products")
        assert exc_info.value.kind == ErrorKind.NETWORK
        assert not exc_info.value.timed_out

    async def test_timeout_is_its_own_kind(self, settings):
        async with make_context(settings, raising(httpx.ReadTimeout)) as ctx:
            with pytest.raises(NetworkError) as exc_info:
                await ctx.client.get("/products")
        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.message == TIMEOUT_MESSAGE

    async def test_unbuildable_request_is_a_setup_error(self, settings):
        async with make_context(settings, raising(httpx.UnsupportedProtocol)) as ctx:
            with pytest.raises(RequestSetupError):
                await ctx.client.get("/products")


class TestUnauthorized:
    async def test_401_clears_session_and_redirects_to_login(self, context, backend):
        await login(context, "sari@batiknusantara.id")
        context.navigator.push("/penjual/dashboard")
        backend.override("GET", "/store/7/products", lambda r: fail(401, "Token expired"))

        with pytest.raises(ResponseError) as exc_info:
            await context.client.get("/store/7/products")

        assert exc_info.value.status_code == 401
        assert context.session.raw() is None
        assert context.auth.user is None
        assert context.auth.token is None
        assert context.navigator.current_path == "/login"

    async def test_no_redirect_when_already_on_login(self, context, backend):
        context.navigator.push("/login")
        backend.override("GET", "/products", lambda r: fail(401, "Unauthorized"))
        with pytest.raises(ResponseError):
            await context.client.get("/products")
        assert context.navigator.history.count("/login") == 1

    async def test_403_keeps_session(self, context, backend):
        await login(context, "rina@example.com")
        with pytest.raises(ResponseError) as exc_info:
            await context.client.get("/all-users")
        assert exc_info.value.status_code == 403
        assert context.auth.user is not None
        assert context.session.raw() is not None


class TestUpload:
    async def test_upload_returns_url(self, context, backend):
        await login(context, "admin@nitikbatik.id")
        path = await context.client.upload("/upload", ("motif.jpg", b"\xff\xd8jpeg", "image/jpeg"),
                                           field_name="image")
        assert path == "/uploads/new-image.jpg"
        request = backend.calls("POST", "/upload")[0]
        assert request.headers["content-type"].startswith("multipart/form-data; boundary=")

    async def test_upload_reads_top_level_path(self, context, backend):
        backend.override("POST", "/upload", lambda r: httpx.Response(
            200, json={"status": True, "path": "/uploads/top.jpg"}))
        path = await context.client.upload("/upload", ("a.jpg", b"x", "image/jpeg"))
        assert path == "/uploads/top.jpg"

    async def test_upload_without_location_fails(self, context, backend):
        backend.override("POST", "/upload", lambda r: ok({}, message="Upload gagal"))
        with pytest.raises(ResponseError, match="Upload gagal"):
            await context.client.upload("/upload", ("a.jpg", b"x", "image/jpeg"))


class TestErrorMessage:
    def test_response_detail_preferred(self):
        assert error_message(ResponseError("x", 400, "Stok habis"), "Gagal") == "Stok habis"

    def test_response_without_detail_uses_fallback(self):
        assert error_message(ResponseError("HTTP 500", 500), "Gagal") == "Gagal"

    def test_network_error_keeps_its_message(self):
        assert error_message(NetworkError(), "Gagal") == NETWORK_MESSAGE

    def test_unknown_exception_uses_fallback(self):
        assert error_message(RuntimeError("x"), "Gagal") == "Gagal"


def test_client_has_no_global_content_type(settings, backend):
    client = AppContext(settings, transport=backend.transport).client
    assert isinstance(client, ApiClient)
    assert "content-type" not in client._http.headers
