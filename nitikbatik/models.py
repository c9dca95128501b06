from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

Id = Union[int, str]


class Role(str, Enum):
    ADMIN = "admin"
    PENJUAL = "penjual"   # seller
    PEMBELI = "pembeli"   # buyer


class Entity(BaseModel):
    # backend field naming is inconsistent; aliases normalise it here, once
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("created_at", "updated_at", mode="before", check_fields=False)
    @classmethod
    def _blank_timestamp(cls, value: Any) -> Any:
        return value or None


def _created_at() -> Any:
    return Field(None, validation_alias=AliasChoices("created_at", "created_At", "createdAt"))


def _updated_at() -> Any:
    return Field(None, validation_alias=AliasChoices("updated_at", "updated_At", "updatedAt"))


class User(Entity):
    id: Id
    name: str = ""
    email: str = ""
    role: str = Role.PEMBELI.value


class Shop(Entity):
    """A seller's storefront (the "store" of the REST API)."""

    id: Optional[Id] = Field(None, validation_alias=AliasChoices("id", "store_id"))
    name: str = ""
    description: str = ""
    whatsapp: str = ""
    alamat: str = ""   # address
    avatar: str = ""
    banner: str = ""
    user_id: Optional[Id] = None
    created_at: Optional[datetime] = _created_at()
    updated_at: Optional[datetime] = _updated_at()


class Article(Entity):
    id: Optional[Id] = None
    title: str
    slug: str
    excerpt: str = ""
    description: str = ""   # HTML
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices("image_url", "imageUrl"))
    created_at: Optional[datetime] = _created_at()


class Product(Entity):
    id: Optional[Id] = None
    name: str
    slug: str
    description: str = ""
    harga: Decimal = Decimal("0")   # price in IDR
    category_id: Optional[Id] = None
    store_id: Optional[Id] = None
    thumbnail: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    stock: int = 0
    store_name: Optional[str] = None
    category_name: Optional[str] = None
    category_slug: Optional[str] = None
    created_at: Optional[datetime] = _created_at()

    @field_validator("harga", mode="before")
    @classmethod
    def _missing_price(cls, value: Any) -> Any:
        return Decimal("0") if value in (None, "") else value

    @field_validator("images", mode="before")
    @classmethod
    def _missing_images(cls, value: Any) -> Any:
        return value or []


class Category(Entity):
    id: Id
    name: str
    slug: str = ""


# Fixed enumeration the product form offers until the remote list has loaded
PRODUCT_CATEGORIES: tuple[Category, ...] = (
    Category(id=1, name="Batik Bali", slug="batik-bali"),
    Category(id=2, name="Batik Kraton", slug="batik-kraton"),
    Category(id=3, name="Batik Betawi", slug="batik-betawi"),
    Category(id=4, name="Batik Pekalongan", slug="batik-pekalongan"),
    Category(id=5, name="Batik Parang", slug="batik-parang"),
    Category(id=6, name="Batik Mega Mendung", slug="batik-mega-mendung"),
)


class Pagination(Entity):
    page: int = 1
    limit: int = 12
    total_items: int = Field(0, validation_alias=AliasChoices("total_items", "totalItems"))
    total_pages: int = Field(0, validation_alias=AliasChoices("total_pages", "totalPages"))


class Session(BaseModel):
    user: Optional[User] = None
    token: Optional[str] = None
    store: Optional[Shop] = None


# ── Wire envelope ────────────────────────────────────────────────────────────

class Envelope(BaseModel):
    status: bool = False
    data: Any = None
    message: Optional[str] = None
