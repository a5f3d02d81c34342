"""
tests/test_change_detector.py

Pure change detection: price deltas and significance, stock flips,
first observations, and input immutability.
"""

from __future__ import annotations

import pytest

from conftest import make_result
from hwsentry.services.change_detector import (
    compute_price_change,
    compute_stock_change,
    detect_changes,
)


class TestPriceChange:
    def test_significant_rise(self) -> None:
        change = compute_price_change(100.00, 103.50)
        assert change.delta == pytest.approx(3.50)
        assert change.percent_change == pytest.approx(3.5)
        assert change.is_significant

    def test_insignificant_rise(self) -> None:
        change = compute_price_change(100.00, 100.50)
        assert change.delta == pytest.approx(0.50)
        assert change.percent_change == pytest.approx(0.5)
        assert not change.is_significant

    def test_absolute_threshold_alone_is_enough(self) -> None:
        # 1.50 on 1000.00 is only 0.15%
        assert compute_price_change(1000.00, 1001.50).is_significant

    def test_percent_threshold_alone_is_enough(self) -> None:
        # 0.50 on 10.00 is 5%
        assert compute_price_change(10.00, 10.50).is_significant

    def test_sub_penny_move_over_threshold_is_significant(self) -> None:
        change = compute_price_change(100.0, 101.004)
        # Reported figures are rounded, the decision is not
        assert change.delta == pytest.approx(1.0)
        assert change.is_significant

    def test_exact_threshold_with_float_noise_is_not_significant(self) -> None:
        # 100.99 - 99.99 is a hair above 1.0 in binary floating point
        assert not compute_price_change(99.99, 100.99).is_significant

    def test_drop_is_negative(self) -> None:
        change = compute_price_change(200.0, 150.0)
        assert change.delta == pytest.approx(-50.0)
        assert change.percent_change == pytest.approx(-25.0)
        assert change.is_significant

    def test_zero_previous_price_omits_percent(self) -> None:
        change = compute_price_change(0.0, 5.0)
        assert change.percent_change is None
        assert change.is_significant


class TestStockChange:
    def test_flip_to_in_stock(self) -> None:
        change = compute_stock_change(False, True)
        assert change.changed
        assert not change.previous
        assert change.current

    def test_no_flip(self) -> None:
        assert not compute_stock_change(True, True).changed


class TestDetectChanges:
    def test_no_previous_leaves_vendors_unannotated(self) -> None:
        current = make_result(prices={"Scan": 100.0})
        result = detect_changes(current, None)
        assert result == current
        assert result.vendors[0].changes is None

    def test_annotates_matching_vendor(self) -> None:
        previous = make_result(prices={"Scan": 100.0})
        current = make_result(prices={"Scan": 103.5})

        result = detect_changes(current, previous)

        price = result.vendors[0].changes.price
        assert price.delta == pytest.approx(3.5)
        assert price.is_significant
        assert result.vendors[0].changes.stock is None

    def test_stock_flip_detected(self) -> None:
        previous = make_result(prices={"Scan": 100.0}, in_stock=False)
        current = make_result(prices={"Scan": 100.0}, in_stock=True)

        stock = detect_changes(current, previous).vendors[0].changes.stock

        assert stock.changed
        assert stock.previous is False
        assert stock.current is True

    def test_null_price_gets_no_price_change(self) -> None:
        previous = make_result(prices={"Scan": 100.0})
        current = make_result(prices={"Scan": None})

        result = detect_changes(current, previous)

        assert result.vendors[0].changes is None

    def test_new_vendor_gets_no_annotation(self) -> None:
        previous = make_result(prices={"Scan": 100.0})
        current = make_result(prices={"Scan": 100.0, "Ebuyer": 99.0})

        result = detect_changes(current, previous)

        assert result.vendor("Ebuyer").changes is None

    def test_vendor_order_is_preserved(self) -> None:
        previous = make_result(prices={"B": 1.0, "A": 2.0})
        current = make_result(prices={"A": 3.0, "B": 4.0})
        result = detect_changes(current, previous)
        assert [v.name for v in result.vendors] == ["A", "B"]

    def test_inputs_are_not_mutated(self) -> None:
        previous = make_result(prices={"Scan": 100.0})
        current = make_result(prices={"Scan": 120.0})
        before = current.model_dump()

        result = detect_changes(current, previous)

        assert current.model_dump() == before
        assert result is not current
        assert current.vendors[0].changes is None
