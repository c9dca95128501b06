import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional, Union

from nitikbatik.errors import FormValidationError

_NON_WORD = re.compile(r"[^\w ]+", re.ASCII)
_SPACES = re.compile(r" +")


def slugify(title: str) -> str:
    """Lowercase, drop anything but ASCII word chars and spaces, hyphenate spaces.

    Lossy and collision-blind: "Batik Tulis Jawa!" and "Batik Tulis Jawa?"
    share a slug.
    """
    return _SPACES.sub("-", _NON_WORD.sub("", title.lower()))


def format_rupiah(amount: Optional[Union[Decimal, int, float, str]]) -> str:
    """Format an IDR amount the id-ID way, without decimals: `Rp 1.250.000`."""
    value = Decimal(str(amount or 0)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    grouped = f"{abs(value):,}".replace(",", ".")
    return f"{sign}Rp {grouped}"


def require_fields(data: Mapping[str, Any], fields: Iterable[str]) -> None:
    missing = [f for f in fields if data.get(f) in (None, "") or
               (isinstance(data.get(f), str) and not data[f].strip())]
    if missing:
        raise FormValidationError(missing)
