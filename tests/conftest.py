"""
Shared fixtures: a deterministic in-memory stand-in for the REST backend.

The catalog is generated from a fixed seed, so every run sees the same shops,
products and articles. `FakeBackend.override` replaces one route's answer for
a single test.
"""

import json
import math
import random
import re
import time
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest

from nitikbatik.config import Settings
from nitikbatik.context import AppContext
from nitikbatik.models import PRODUCT_CATEGORIES
from nitikbatik.utils import slugify

SEED = 42
START = datetime(2026, 1, 1)
API_URL = "http://backend.test/api"
PASSWORD = "rahasia"

MOTIFS = ["Kawung", "Truntum", "Sidomukti", "Lasem", "Sekar Jagad",
          "Tujuh Rupa", "Ondel-ondel", "Jlamprang"]
GARMENTS = ["Kemeja", "Kain", "Selendang", "Dress", "Outer"]


def make_token(user_id: Any = 1, exp: Optional[float] = None, **claims: Any) -> str:
    payload = {"sub": str(user_id), **claims}
    if exp is not None:
        payload["exp"] = int(exp)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def _rand_dt(rng: random.Random) -> datetime:
    return START + timedelta(seconds=rng.randint(0, 30 * 86400))


def seed_products(shop: dict, count: int, rng: random.Random) -> list[dict]:
    products = []
    for _ in range(count):
        category = rng.choice(PRODUCT_CATEGORIES)
        name = f"{rng.choice(GARMENTS)} {category.name} {rng.choice(MOTIFS)} {rng.randint(1, 999)}"
        products.append({
            "id": None,
            "name": name,
            "slug": slugify(name),
            "description": f"<p>{name} dari {shop['name']}</p>",
            "harga": rng.randint(5, 250) * 10_000,
            "category_id": category.id,
            "store_id": shop["id"],
            "thumbnail": f"/uploads/{slugify(name)}.jpg",
            "images": [f"/uploads/{slugify(name)}-1.jpg"],
            "stock": rng.choice([0, 3, 8, 15, 40]),
            "store_name": shop["name"],
            "category_name": category.name,
            "category_slug": category.slug,
            "created_At": _rand_dt(rng).isoformat(),
        })
    return products


class FakeBackend:
    def __init__(self) -> None:
        rng = random.Random(SEED)
        self.requests: list[httpx.Request] = []
        self.tokens: dict[str, int] = {}
        self.overrides: dict[tuple[str, str], Callable[[httpx.Request], Any]] = {}

        self.users = [
            {"id": 1, "name": "Admin NitikBatik", "email": "admin@nitikbatik.id", "role": "admin"},
            {"id": 2, "name": "Sari", "email": "sari@batiknusantara.id", "role": "penjual"},
            {"id": 3, "name": "Budi", "email": "budi@example.com", "role": "penjual"},
            {"id": 4, "name": "Rina", "email": "rina@example.com", "role": "pembeli"},
            {"id": 5, "name": "Dewi", "email": "dewi@kratonheritage.id", "role": "penjual"},
        ]
        self.shops = [
            {"id": 7, "name": "Batik Nusantara", "description": "Batik tulis dari Solo",
             "whatsapp": "081234567890", "alamat": "Jl. Slamet Riyadi 12, Solo",
             "avatar": "/uploads/nusantara.png", "banner": "", "user_id": 2,
             "created_At": "2026-01-02T08:00:00"},
            {"id": 8, "name": "Kraton Heritage", "description": "Motif kraton Yogyakarta",
             "whatsapp": "082233445566", "alamat": "Jl. Rotowijayan 1, Yogyakarta",
             "avatar": "", "banner": "", "user_id": 5, "createdAt": "2026-01-03T09:30:00"},
        ]
        self.products = seed_products(self.shops[0], 30, rng) + seed_products(self.shops[1], 6, rng)
        for index, product in enumerate(self.products, start=1):
            product["id"] = index
        self.articles = []
        for index in range(1, 13):
            title = f"Mengenal {rng.choice(MOTIFS)} bagian {index}"
            self.articles.append({
                "id": index,
                "title": title,
                "slug": slugify(title),
                "excerpt": f"Ringkasan {title}",
                "description": f"<p>{title}</p>",
                "imageUrl": f"/uploads/article-{index}.jpg",
                "created_at": _rand_dt(rng).isoformat(),
            })
        self.latest: Optional[list[list[dict]]] = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def override(self, method: str, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.overrides[(method, path)] = handler

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests
                if r.method == method and r.url.path == "/api" + path]

    def issue_token(self, user_id: int, ttl: float = 3600) -> str:
        token = make_token(user_id, exp=time.time() + ttl)
        self.tokens[token] = user_id
        return token

    # ── dispatch ──────────────────────────────────────────────────────────────

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")
        override = self.overrides.get((request.method, path))
        if override is not None:
            return override(request)
        for method, pattern, handler in self._routes():
            match = re.fullmatch(pattern, path)
            if method == request.method and match:
                return handler(request, *match.groups())
        return fail(404, f"No route for {request.method} {path}")

    def _routes(self) -> list[tuple[str, str, Callable[..., httpx.Response]]]:
        return [
            ("POST", r"/login", self._login),
            ("POST", r"/register", self._register),
            ("GET", r"/store/user/(\w+)", self._store_of_user),
            ("GET", r"/store/(\w+)/products", self._store_products),
            ("GET", r"/store/(\w+)", self._store),
            ("POST", r"/store", self._create_store),
            ("PUT", r"/store/(\w+)", self._update_store),
            ("DELETE", r"/store/(\w+)", self._delete_store),
            ("GET", r"/products", self._all_products),
            ("GET", r"/products/category/([\w-]+)", self._category_products),
            ("GET", r"/latest-products", self._latest_products),
            ("GET", r"/product/detail/([\w-]+)", self._product_detail),
            ("GET", r"/product/([\w-]+)", self._product_public),
            ("POST", r"/product", self._create_product),
            ("PUT", r"/product/([\w-]+)", self._update_product),
            ("DELETE", r"/product/([\w-]+)", self._delete_product),
            ("GET", r"/product-category", self._categories),
            ("GET", r"/articles", self._articles),
            ("GET", r"/articles/search", self._search_articles),
            ("GET", r"/articles/slug/([\w-]+)", self._article),
            ("POST", r"/articles", self._create_article),
            ("PUT", r"/articles/(\w+)", self._update_article),
            ("DELETE", r"/articles/(\w+)", self._delete_article),
            ("GET", r"/all-users", self._all_users),
            ("POST", r"/upload", self._upload),
        ]

    # ── helpers ───────────────────────────────────────────────────────────────

    def _caller(self, request: httpx.Request) -> Optional[dict]:
        user_id = self.tokens.get(request.headers.get("Authorization", ""))
        return next((u for u in self.users if u["id"] == user_id), None)

    def _shop_of(self, user_id: Any) -> Optional[dict]:
        return next((s for s in self.shops if str(s["user_id"]) == str(user_id)), None)

    def _identity(self, user: dict) -> httpx.Response:
        return ok({**user, "token": self.issue_token(user["id"])})

    # ── auth ──────────────────────────────────────────────────────────────────

    def _login(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        user = next((u for u in self.users if u["email"] == body.get("email")), None)
        if user is None or body.get("password") != PASSWORD:
            return fail(400, "Email atau password salah")
        return self._identity(user)

    def _register(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if any(u["email"] == body["email"] for u in self.users):
            return fail(400, "Email sudah terdaftar")
        user = {"id": len(self.users) + 1, "name": body["name"],
                "email": body["email"], "role": body.get("role", "penjual")}
        self.users.append(user)
        return self._identity(user)

    # ── shops ─────────────────────────────────────────────────────────────────

    def _store_of_user(self, request: httpx.Request, user_id: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        shop = self._shop_of(user_id)
        return ok(shop) if shop else fail(404, "Store not found")

    def _store(self, request: httpx.Request, store_id: str) -> httpx.Response:
        shop = next((s for s in self.shops if str(s["id"]) == store_id), None)
        return ok(shop) if shop else fail(404, "Store not found")

    def _create_store(self, request: httpx.Request) -> httpx.Response:
        user = self._caller(request)
        if user is None:
            return fail(401, "Unauthorized")
        shop = {**json.loads(request.content), "id": 100 + len(self.shops), "user_id": user["id"]}
        self.shops.append(shop)
        return ok(shop)

    def _update_store(self, request: httpx.Request, store_id: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        shop = next((s for s in self.shops if str(s["id"]) == store_id), None)
        if shop is None:
            return fail(404, "Store not found")
        shop.update(json.loads(request.content))
        return ok(shop)

    def _delete_store(self, request: httpx.Request, store_id: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        self.shops = [s for s in self.shops if str(s["id"]) != store_id]
        return ok(None)

    # ── products ──────────────────────────────────────────────────────────────

    def _store_products(self, request: httpx.Request, store_id: str) -> httpx.Response:
        found = [p for p in self.products if str(p["store_id"]) == store_id]
        return paged(request, matching(request, found), "products")

    def _all_products(self, request: httpx.Request) -> httpx.Response:
        return paged(request, matching(request, self.products), "products")

    def _category_products(self, request: httpx.Request, slug: str) -> httpx.Response:
        found = [p for p in self.products if p["category_slug"] == slug]
        return paged(request, found, "products")

    def _latest_products(self, request: httpx.Request) -> httpx.Response:
        if self.latest is not None:
            return ok(self.latest.pop(0) if self.latest else [])
        newest = sorted(self.products, key=lambda p: p.get("created_At", p.get("created_at", "")),
                        reverse=True)
        return ok(newest[:8])

    def _find_product(self, slug: str) -> Optional[dict]:
        return next((p for p in self.products if p["slug"] == slug), None)

    def _product_detail(self, request: httpx.Request, slug: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        product = self._find_product(slug)
        return ok(product) if product else fail(404, "Product not found")

    def _product_public(self, request: httpx.Request, slug: str) -> httpx.Response:
        product = self._find_product(slug)
        return ok(product) if product else fail(404, "Product not found")

    def _create_product(self, request: httpx.Request) -> httpx.Response:
        user = self._caller(request)
        if user is None:
            return fail(401, "Unauthorized")
        shop = self._shop_of(user["id"])
        fields = form_fields(request)
        product = {
            "id": len(self.products) + 1,
            "name": fields["name"],
            "slug": slugify(fields["name"]),
            "description": fields.get("description", ""),
            "harga": int(fields["harga"]),
            "category_id": int(fields["category_id"]),
            "store_id": shop["id"],
            "images": [],
            "stock": int(fields.get("stock", 0)),
            "store_name": shop["name"],
            "created_at": "2026-02-01T00:00:00",
        }
        self.products.append(product)
        return ok(product)

    def _update_product(self, request: httpx.Request, slug: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        product = self._find_product(slug)
        if product is None:
            return fail(404, "Product not found")
        if not request.headers.get("content-type", "").startswith("application/json"):
            product.update(form_fields(request))
        else:
            product.update(json.loads(request.content))
        return ok(product)

    def _delete_product(self, request: httpx.Request, slug: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        self.products = [p for p in self.products if p["slug"] != slug]
        return ok(None)

    def _categories(self, request: httpx.Request) -> httpx.Response:
        return ok([c.model_dump() for c in PRODUCT_CATEGORIES])

    # ── articles & users ──────────────────────────────────────────────────────

    def _articles(self, request: httpx.Request) -> httpx.Response:
        return paged(request, matching(request, self.articles, field="title"), "articles")

    def _search_articles(self, request: httpx.Request) -> httpx.Response:
        term = request.url.params.get("q", "").lower()
        found = [a for a in self.articles if term in a["title"].lower()]
        return paged(request, found, "articles")

    def _article(self, request: httpx.Request, slug: str) -> httpx.Response:
        article = next((a for a in self.articles if a["slug"] == slug), None)
        return ok(article) if article else fail(404, "Article not found")

    def _create_article(self, request: httpx.Request) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        article = {**json.loads(request.content), "id": len(self.articles) + 1}
        self.articles.append(article)
        return ok(article)

    def _update_article(self, request: httpx.Request, article_id: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        article = next((a for a in self.articles if str(a["id"]) == article_id), None)
        if article is None:
            return fail(404, "Article not found")
        article.update(json.loads(request.content))
        return ok(article)

    def _delete_article(self, request: httpx.Request, article_id: str) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        self.articles = [a for a in self.articles if str(a["id"]) != article_id]
        return ok(None)

    def _all_users(self, request: httpx.Request) -> httpx.Response:
        caller = self._caller(request)
        if caller is None:
            return fail(401, "Unauthorized")
        if caller["role"] != "admin":
            return fail(403, "Forbidden")
        return paged(request, self.users, "users")

    def _upload(self, request: httpx.Request) -> httpx.Response:
        if self._caller(request) is None:
            return fail(401, "Unauthorized")
        return ok({"url": "/uploads/new-image.jpg"})


# ── response builders ─────────────────────────────────────────────────────────

def ok(data: Any, message: str = "success") -> httpx.Response:
    return httpx.Response(200, json={"status": True, "data": data, "message": message})


def fail(status_code: int, message: str) -> httpx.Response:
    return httpx.Response(status_code, json={"status": False, "data": None, "message": message})


def matching(request: httpx.Request, entries: list[dict], field: str = "name") -> list[dict]:
    term = request.url.params.get("search", "").lower()
    return [e for e in entries if term in e[field].lower()] if term else entries


def paged(request: httpx.Request, entries: list[dict], key: str) -> httpx.Response:
    page = int(request.url.params.get("page", 1))
    limit = int(request.url.params.get("limit", 12))
    window = entries[(page - 1) * limit: page * limit]
    return ok({
        key: window,
        "pagination": {
            "page": page,
            "limit": limit,
            "totalItems": len(entries),
            "totalPages": math.ceil(len(entries) / limit),
        },
    })


def form_fields(request: httpx.Request) -> dict[str, str]:
    if request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
        return dict(parse_qsl(request.content.decode()))
    body = request.content.decode("latin-1")
    return dict(re.findall(r'name="([^"]+)"\r\n\r\n(.*?)\r\n', body))


class RecordingSleep:
    """Async stand-in for asyncio.sleep that only records the delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ── fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_url=API_URL)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def context(backend, settings, sleep):
    async with AppContext(settings, transport=backend.transport, sleep=sleep) as ctx:
        yield ctx


async def login(context: AppContext, email: str) -> None:
    await context.auth.login(email, PASSWORD)


class FakeCompletions:
    """Records chat completion calls and answers with a canned reply."""

    def __init__(self, answer: str = "", error: Optional[Exception] = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.answer)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_openai(completions: FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))
