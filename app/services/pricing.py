# app/services/pricing.py
"""
"东部三角" 配送计价（Harar / Dire Dawa / Haramaya）

纯函数，无状态、无 I/O：同样的 (城市, 校区) 永远得到同样的 (运费, 时效)。

运费档位（ETB）：
  - 同城   40   "30 minutes - 1 hour"  Harar → Harar_Campus / Dire Dawa → DDU
  - 到中点 100  "3-4 hours"            任一城市 → Haramaya_Main
  - 跨城   180  "5-6 hours"            Harar → DDU / Dire Dawa → Harar_Campus

多店铺订单：按“去重后的店铺”逐店计费再求和（每个店铺是一趟独立取件）。
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from types import MappingProxyType
from typing import Iterable, Mapping, Protocol

from app.models.enums import Campus, City


class RouteCategory(StrEnum):
    INTRA_CITY = "intra-city"
    CITY_TO_CAMPUS = "city-to-campus"
    INTER_CITY = "inter-city"


@dataclass(frozen=True)
class DeliveryRoute:
    fee: Decimal
    eta: str
    category: RouteCategory


class UnknownRouteError(ValueError):
    pass


_INTRA = DeliveryRoute(Decimal("40"), "30 minutes - 1 hour", RouteCategory.INTRA_CITY)
_MIDPOINT = DeliveryRoute(Decimal("100"), "3-4 hours", RouteCategory.CITY_TO_CAMPUS)
_INTER = DeliveryRoute(Decimal("180"), "5-6 hours", RouteCategory.INTER_CITY)

ROUTE_MATRIX: Mapping[City, Mapping[Campus, DeliveryRoute]] = MappingProxyType(
    {
        City.HARAR: MappingProxyType(
            {
                Campus.HARAR_CAMPUS: _INTRA,
                Campus.HARAMAYA_MAIN: _MIDPOINT,
                Campus.DDU: _INTER,
            }
        ),
        City.DIRE_DAWA: MappingProxyType(
            {
                Campus.DDU: _INTRA,
                Campus.HARAMAYA_MAIN: _MIDPOINT,
                Campus.HARAR_CAMPUS: _INTER,
            }
        ),
    }
)

_CAMPUS_NAMES = {
    Campus.HARAMAYA_MAIN: "Haramaya Main Campus",
    Campus.HARAR_CAMPUS: "Harar Campus",
    Campus.DDU: "Dire Dawa University",
}


def _coerce(city: City | str, campus: Campus | str) -> tuple[City, Campus]:
    try:
        return City(city), Campus(campus)
    except ValueError as e:
        raise UnknownRouteError(f"invalid route: {city} -> {campus}") from e


def calculate_delivery_fee(city: City | str, campus: Campus | str) -> DeliveryRoute:
    """单条线路的运费与时效。"""
    c, cp = _coerce(city, campus)
    route = ROUTE_MATRIX.get(c, {}).get(cp)
    if route is None:
        raise UnknownRouteError(f"invalid route: {c} -> {cp}")
    return route


def is_valid_route(city: City | str, campus: Campus | str) -> bool:
    try:
        calculate_delivery_fee(city, campus)
    except UnknownRouteError:
        return False
    return True


def deliverable_locations(city: City | str) -> list[Campus]:
    try:
        c = City(city)
    except ValueError:
        return []
    return list(ROUTE_MATRIX.get(c, {}).keys())


def route_category(city: City | str, campus: Campus | str) -> RouteCategory:
    return calculate_delivery_fee(city, campus).category


def route_description(city: City | str, campus: Campus | str) -> str:
    c, cp = _coerce(city, campus)
    route = calculate_delivery_fee(c, cp)
    return f"{c.value} → {_CAMPUS_NAMES[cp]}: {route.fee} ETB ({route.eta})"


class ShopOrigin(Protocol):
    shop_id: int
    shop_city: City


def calculate_order_delivery_fee(items: Iterable[ShopOrigin], campus: Campus | str) -> Decimal:
    """
    订单运费：按 shop_id 去重，逐店线路运费求和。
    同一店铺多件商品只算一趟。
    """
    per_shop: dict[int, City] = {}
    for it in items:
        per_shop.setdefault(int(it.shop_id), City(it.shop_city))
    total = Decimal("0")
    for city in per_shop.values():
        total += calculate_delivery_fee(city, campus).fee
    return total
