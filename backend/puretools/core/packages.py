from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    price: int  # minor currency units
    currency: str = "eur"
    popular: bool = False


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(id="starter", name="Starter", credits=50, price=499),
    CreditPackage(id="popular", name="Popular", credits=150, price=999, popular=True),
    CreditPackage(id="pro", name="Pro", credits=500, price=2499),
)

_PACKAGES_BY_ID: dict[str, CreditPackage] = {pkg.id: pkg for pkg in CREDIT_PACKAGES}


def get_package(package_id: str | None) -> CreditPackage | None:
    if not package_id:
        return None
    return _PACKAGES_BY_ID.get(package_id.strip().lower())


_CURRENCY_SYMBOLS = {"eur": "€", "usd": "$", "gbp": "£"}


def format_price(amount: int, currency: str = "eur") -> str:
    """Minor units to a display string, e.g. 499 -> '4,99 €'."""
    value = (Decimal(amount) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    symbol = _CURRENCY_SYMBOLS.get(currency.lower(), currency.upper())
    return f"{value:.2f}".replace(".", ",") + f" {symbol}"
