"""
Server-side pricing for balloon flight bookings.

Totals are always recomputed here from passenger counts and add-on names;
amounts coming from the client are never trusted. Prices in the table are
whole-currency units (MXN pesos) and results are minor units (centavos).
"""
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from wefly.errors import InvalidBookingError

MINOR_UNITS = 100
PRODUCT_NAME_LIMIT = 120


class PricingMode(str, Enum):
    FLAT = "flat"
    PER_PASSENGER = "per_passenger"


class AddonPrice(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: Decimal
    mode: PricingMode = PricingMode.FLAT


class PriceTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    adult: Decimal = Decimal("2500")
    child: Decimal = Decimal("2200")
    addons: Dict[str, AddonPrice] = Field(default_factory=dict)


class PricedLine(BaseModel):
    kind: str  # "passenger" or "addon"
    name: str
    pricing_mode: PricingMode
    unit_price: Decimal
    amount: int  # minor units


class PricedBooking(BaseModel):
    total_amount: int  # minor units
    lines: List[PricedLine]


def _to_whole_units(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _to_minor(value: Decimal) -> int:
    return int(_to_whole_units(value) * MINOR_UNITS)


def price_booking(passengers, addons: Sequence[str], price_table: PriceTable) -> PricedBooking:
    """
    Price a booking and keep the per-line breakdown.

    Each line is rounded half-up to a whole currency unit before it is
    converted to minor units. Unknown add-on names are rejected.
    """
    adults = passengers.adults
    children = passengers.children
    if adults < 0 or children < 0:
        raise InvalidBookingError("Passenger counts cannot be negative.")
    pax = adults + children
    if pax <= 0:
        raise InvalidBookingError("At least one passenger must be selected.")

    lines = []
    if adults:
        lines.append(PricedLine(
            kind="passenger",
            name="adult",
            pricing_mode=PricingMode.PER_PASSENGER,
            unit_price=price_table.adult,
            amount=_to_minor(price_table.adult * adults),
        ))
    if children:
        lines.append(PricedLine(
            kind="passenger",
            name="child",
            pricing_mode=PricingMode.PER_PASSENGER,
            unit_price=price_table.child,
            amount=_to_minor(price_table.child * children),
        ))

    for name in addons:
        addon = price_table.addons.get(name)
        if addon is None:
            raise InvalidBookingError(f"Unknown add-on: {name}")
        quantity = pax if addon.mode == PricingMode.PER_PASSENGER else 1
        lines.append(PricedLine(
            kind="addon",
            name=name,
            pricing_mode=addon.mode,
            unit_price=addon.price,
            amount=_to_minor(addon.price * quantity),
        ))

    total = sum(line.amount for line in lines)
    if total <= 0:
        raise InvalidBookingError("Invalid total.")
    return PricedBooking(total_amount=total, lines=lines)


def compute_total(passengers, addons: Sequence[str], price_table: PriceTable) -> int:
    return price_booking(passengers, addons, price_table).total_amount


def describe_booking(passengers, addons: Sequence[str]) -> str:
    """Line-item label shown on the Checkout page and the Stripe dashboard."""
    adults_label = "adult" if passengers.adults == 1 else "adults"
    children_label = "child" if passengers.children == 1 else "children"
    name = f"Balloon flight ({passengers.adults} {adults_label}, {passengers.children} {children_label})"
    if addons:
        name += " + " + " + ".join(addons)
    return name[:PRODUCT_NAME_LIMIT]
