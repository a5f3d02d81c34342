"""
Change detection between two scans of the same SKU.
"""

from hwsentry.models import (
    PriceChange,
    ScanResult,
    StockChange,
    VendorChanges,
    VendorResult,
)

# A move is significant past either threshold
SIGNIFICANT_DELTA = 1.0  # Currency units
SIGNIFICANT_PERCENT = 2.0

# Absorbs float noise such as 100.99 - 99.99 == 1.0000000000000142
_EPSILON = 1e-9


def _exceeds(value: float, threshold: float) -> bool:
    return abs(value) - threshold > _EPSILON


def compute_price_change(previous: float, current: float) -> PriceChange:
    delta = current - previous
    percent = delta / previous * 100 if previous else None
    significant = _exceeds(delta, SIGNIFICANT_DELTA) or (
        percent is not None and _exceeds(percent, SIGNIFICANT_PERCENT)
    )
    return PriceChange(
        previous=previous,
        current=current,
        delta=round(delta, 2),
        percent_change=round(percent, 2) if percent is not None else None,
        is_significant=significant,
    )


def compute_stock_change(previous: bool, current: bool) -> StockChange:
    return StockChange(changed=previous != current, previous=previous, current=current)


def _vendor_changes(
    current: VendorResult, previous: VendorResult
) -> VendorChanges | None:
    price = None
    if current.price is not None and previous.price is not None:
        price = compute_price_change(previous.price, current.price)

    stock = None
    if current.in_stock != previous.in_stock:
        stock = compute_stock_change(previous.in_stock, current.in_stock)

    if price is None and stock is None:
        return None
    return VendorChanges(price=price, stock=stock)


def detect_changes(current: ScanResult, previous: ScanResult | None) -> ScanResult:
    """
    Annotate ``current`` with per-vendor deltas against ``previous``.

    Returns a new ScanResult and never mutates either input. Vendors are
    matched by name; a vendor seen for the first time gets no annotation.
    """
    if previous is None:
        return current.model_copy(deep=True)

    previous_by_name = {v.name: v for v in previous.vendors}
    vendors = []
    for vendor in current.vendors:
        before = previous_by_name.get(vendor.name)
        changes = _vendor_changes(vendor, before) if before else None
        vendors.append(vendor.model_copy(update={"changes": changes}, deep=True))

    return current.model_copy(update={"vendors": vendors}, deep=True)
