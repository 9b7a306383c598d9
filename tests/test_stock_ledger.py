"""Stock ledger behaviour exercised against a real in-memory workbook."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from station_ledger import constants, core_logic, data_manager, stock_ledger
from station_ledger.errors import (
    InvalidReading,
    InvalidRealStock,
    InvalidRestockAmount,
    MissingReferenceError,
    NoHistoryToReconcile,
    NoHistoryToRestock,
    ReadingConflict,
    ReconciliationNotAllowed,
    StoreFailure,
)

STATION = "ST001"
DAY = date(2024, 3, 10)
NOW = datetime(2024, 3, 10, 18, 0, tzinfo=UTC)


def _reading(context, pump_id, record_date, opening, closing):
    return stock_ledger.record_meter_reading(
        context,
        stock_ledger.MeterReadingCommand(
            station_id=STATION,
            pump_id=pump_id,
            record_date=record_date,
            meter_opening=Decimal(opening),
            meter_closing=Decimal(closing),
            timestamp=NOW,
        ),
    )


def _restock(context, tank_id, record_date, amount):
    return stock_ledger.restock_tank(
        context,
        stock_ledger.RestockCommand(
            station_id=STATION, tank_id=tank_id, record_date=record_date, amount=amount, timestamp=NOW
        ),
    )


def _store(context, pump_id, record_date, **overrides):
    """Write a record straight into the record store, bypassing the ledger."""

    pump = core_logic.get_pump(context, STATION, pump_id)
    values = dict(
        record_id=core_logic.fuel_record_id(STATION, pump_id, record_date),
        station_id=STATION,
        pump_id=pump_id,
        product_type=pump.product_type,
        record_date=record_date,
        meter_opening=Decimal("0"),
        meter_closing=Decimal("0"),
        sales_volume=Decimal("0"),
        price_per_litre=Decimal("0"),
        total_sales=Decimal("0"),
        opening_stock=Decimal("0"),
        closing_stock=Decimal("0"),
        input_mode=constants.InputMode.MANUAL.value,
        created_at=NOW.isoformat(),
    )
    values.update(overrides)
    return core_logic.upsert_record(context, data_manager.FuelRecordRow(**values))


def _get(context, pump_id, record_date):
    return core_logic.get_record(context, STATION, pump_id, record_date)


# ---------------------------------------------------------------------------
# Meter reading path
# ---------------------------------------------------------------------------


def test_reading_derives_sales_and_clamps_closing_stock(station_context):
    result = _reading(station_context, "P1", DAY, "1000", "1500")

    record = result.record
    assert record.sales_volume == Decimal("500")
    assert record.opening_stock == Decimal("0")
    assert record.closing_stock == Decimal("0")
    assert record.input_mode == "manual"
    assert record.price_per_litre == Decimal("617")
    assert record.total_sales == Decimal("308500.00")


def test_reading_opens_from_yesterdays_closing_stock(station_context):
    _store(station_context, "P1", DAY - timedelta(days=1), opening_stock=Decimal("5000"), closing_stock=Decimal("4000"))

    record = _reading(station_context, "P1", DAY, "1000", "1300").record

    assert record.opening_stock == Decimal("4000")
    assert record.closing_stock == Decimal("3700")


def test_reading_keeps_pinned_opening_stock(station_context):
    _store(station_context, "P1", DAY, opening_stock=Decimal("2500"), closing_stock=Decimal("2500"))
    _store(station_context, "P1", DAY - timedelta(days=1), closing_stock=Decimal("9999"))

    record = _reading(station_context, "P1", DAY, "100", "150").record

    assert record.opening_stock == Decimal("2500")
    assert record.closing_stock == Decimal("2450")


@pytest.mark.parametrize(
    ("opening", "closing"),
    [("1500", "1000"), ("-1", "10"), ("abc", "10")],
)
def test_invalid_readings_are_rejected_before_writing(station_context, opening, closing):
    with pytest.raises(InvalidReading):
        stock_ledger.record_meter_reading(
            station_context,
            stock_ledger.MeterReadingCommand(STATION, "P1", DAY, opening, closing, timestamp=NOW),
        )
    assert _get(station_context, "P1", DAY) is None


def test_reading_for_unknown_pump_raises(station_context):
    with pytest.raises(MissingReferenceError):
        _reading(station_context, "P404", DAY, "1", "2")


def test_reading_without_price_records_zero_value(station_context):
    record = _reading(station_context, "P3", DAY, "10", "60").record

    assert record.sales_volume == Decimal("50")
    assert record.price_per_litre == Decimal("0")
    assert record.total_sales == Decimal("0")


def test_identical_readings_are_idempotent(station_context):
    first = _reading(station_context, "P1", DAY, "1000", "1500")
    second = _reading(station_context, "P1", DAY, "1000", "1500")

    assert second.record == first.record
    assert second.next_record == first.next_record
    assert len(stock_ledger.list_fuel_records(station_context, STATION, DAY)) == 1


def test_reading_creates_placeholder_for_tomorrow(station_context):
    _store(station_context, "P1", DAY - timedelta(days=1), closing_stock=Decimal("3000"))

    result = _reading(station_context, "P1", DAY, "1000", "1200")

    assert result.placeholder_created is True
    tomorrow = _get(station_context, "P1", DAY + timedelta(days=1))
    assert tomorrow == result.next_record
    assert tomorrow.input_mode == "auto"
    assert tomorrow.meter_opening == Decimal("1200")
    assert tomorrow.meter_closing == Decimal("0")
    assert tomorrow.sales_volume == Decimal("0")
    assert tomorrow.opening_stock == tomorrow.closing_stock == Decimal("2800")


def test_reading_edit_propagates_chain_and_recomputes_tomorrow(station_context):
    tomorrow_date = DAY + timedelta(days=1)
    _store(
        station_context,
        "P1",
        DAY,
        meter_opening=Decimal("1000"),
        meter_closing=Decimal("1500"),
        sales_volume=Decimal("500"),
        opening_stock=Decimal("5000"),
        closing_stock=Decimal("4500"),
    )
    _store(
        station_context,
        "P1",
        tomorrow_date,
        meter_opening=Decimal("1500"),
        meter_closing=Decimal("1800"),
        sales_volume=Decimal("300"),
        price_per_litre=Decimal("617"),
        total_sales=Decimal("185100.00"),
        opening_stock=Decimal("4500"),
        closing_stock=Decimal("4200"),
    )

    result = _reading(station_context, "P1", DAY, "1000", "1400")

    assert result.placeholder_created is False
    today = _get(station_context, "P1", DAY)
    tomorrow = _get(station_context, "P1", tomorrow_date)
    assert today.closing_stock == Decimal("4600")
    assert tomorrow.opening_stock == today.closing_stock
    assert tomorrow.meter_opening == Decimal("1400")
    assert tomorrow.sales_volume == Decimal("400")
    assert tomorrow.total_sales == Decimal("246800.00")
    assert tomorrow.closing_stock == Decimal("4200")
    assert tomorrow.input_mode == "manual"


def test_reading_conflicting_with_tomorrow_is_rejected(station_context):
    tomorrow_date = DAY + timedelta(days=1)
    original = _store(
        station_context,
        "P1",
        DAY,
        meter_opening=Decimal("1000"),
        meter_closing=Decimal("1500"),
        sales_volume=Decimal("500"),
    )
    _store(
        station_context,
        "P1",
        tomorrow_date,
        meter_opening=Decimal("1500"),
        meter_closing=Decimal("1800"),
        sales_volume=Decimal("300"),
    )

    with pytest.raises(ReadingConflict):
        _reading(station_context, "P1", DAY, "1000", "1900")

    assert _get(station_context, "P1", DAY) == original


def test_reading_compensates_today_when_tomorrow_write_fails(station_context, monkeypatch):
    original_upsert = data_manager.upsert_fuel_record
    calls = {"count": 0}

    def flaky_upsert(workbook, record):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OSError("disk full")
        return original_upsert(workbook, record)

    monkeypatch.setattr(data_manager, "upsert_fuel_record", flaky_upsert)

    with pytest.raises(StoreFailure):
        _reading(station_context, "P1", DAY, "1000", "1500")

    assert _get(station_context, "P1", DAY) is None
    assert _get(station_context, "P1", DAY + timedelta(days=1)) is None


# ---------------------------------------------------------------------------
# Previous-day resolution
# ---------------------------------------------------------------------------


def test_resolution_without_history_is_zero(station_context):
    snapshot = stock_ledger.resolve_previous_day_stock(station_context, STATION, "P1", DAY)

    assert snapshot.source == "none"
    assert snapshot.opening_stock == snapshot.closing_stock == Decimal("0")


def test_resolution_prefers_todays_record(station_context):
    _store(station_context, "P1", DAY, opening_stock=Decimal("900"), sales_volume=Decimal("100"), closing_stock=Decimal("800"))

    snapshot = stock_ledger.resolve_previous_day_stock(station_context, STATION, "P1", DAY)

    assert snapshot.source == "today"
    assert (snapshot.opening_stock, snapshot.sales_volume, snapshot.closing_stock) == (
        Decimal("900"),
        Decimal("100"),
        Decimal("800"),
    )


def test_resolution_uses_yesterdays_closing_values(station_context):
    _store(station_context, "P1", DAY - timedelta(days=1), meter_closing=Decimal("1500"), closing_stock=Decimal("750"))

    snapshot = stock_ledger.resolve_previous_day_stock(station_context, STATION, "P1", DAY)

    assert snapshot.source == "yesterday"
    assert snapshot.opening_stock == snapshot.closing_stock == Decimal("750")
    assert snapshot.opening_meter == snapshot.closing_meter == Decimal("1500")
    assert snapshot.sales_volume == Decimal("0")


def test_resolution_falls_back_across_gaps(station_context):
    _store(station_context, "P1", DAY - timedelta(days=3), meter_closing=Decimal("2200"), closing_stock=Decimal("640"))

    snapshot = stock_ledger.resolve_previous_day_stock(station_context, STATION, "P1", DAY)

    assert snapshot.source == "history"
    assert snapshot.opening_stock == Decimal("640")
    assert snapshot.closing_meter == Decimal("2200")


# ---------------------------------------------------------------------------
# Restock path
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("amount", ["0", "-5", "abc", None, ""])
def test_restock_rejects_invalid_amounts(station_context, amount):
    with pytest.raises(InvalidRestockAmount):
        _restock(station_context, "T1", DAY, amount)


def test_restock_adds_exactly_the_amount(station_context):
    _store(station_context, "P1", DAY, opening_stock=Decimal("1200"), sales_volume=Decimal("200"), closing_stock=Decimal("1000"))
    _store(station_context, "P2", DAY, opening_stock=Decimal("1200"), closing_stock=Decimal("1200"))

    result = _restock(station_context, "T1", DAY, "3000")

    assert result.previous_opening_stock == Decimal("1200")
    assert result.new_opening_stock == Decimal("4200")
    assert result.failures == ()
    p1 = _get(station_context, "P1", DAY)
    p2 = _get(station_context, "P2", DAY)
    assert p1.opening_stock == p2.opening_stock == Decimal("4200")
    assert p1.closing_stock == Decimal("4000")
    assert stock_ledger.get_tank_group(station_context, STATION, "T1", DAY).opening_stock == Decimal("4200")


def test_restock_retags_placeholders(station_context):
    _store(station_context, "P3", DAY, input_mode=constants.InputMode.AUTO.value)

    _restock(station_context, "T2", DAY, "500")

    assert _get(station_context, "P3", DAY).input_mode == "restock"


def test_restock_without_same_day_record_rewrites_prior_closing(station_context):
    prior_date = DAY - timedelta(days=2)
    _store(station_context, "P3", prior_date, opening_stock=Decimal("900"), closing_stock=Decimal("700"))

    result = _restock(station_context, "T2", DAY, "300")

    assert result.new_opening_stock == Decimal("1000")
    assert _get(station_context, "P3", DAY) is None
    assert _get(station_context, "P3", prior_date).closing_stock == Decimal("1000")


def test_restock_reports_pumps_without_history_and_continues(station_context):
    _store(station_context, "P1", DAY, opening_stock=Decimal("100"), closing_stock=Decimal("100"))

    result = _restock(station_context, "T1", DAY, "50")

    assert [record.pump_id for record in result.updated_records] == ["P1"]
    assert len(result.failures) == 1
    assert isinstance(result.failures[0], NoHistoryToRestock)
    assert result.failures[0].pump_id == "P2"


def test_restock_with_no_history_at_all_raises_and_restores_tank(station_context):
    before = stock_ledger.get_tank_group(station_context, STATION, "T2", DAY)

    with pytest.raises(NoHistoryToRestock):
        _restock(station_context, "T2", DAY, "500")

    assert stock_ledger.get_tank_group(station_context, STATION, "T2", DAY) == before


def test_restock_unknown_tank_raises(station_context):
    with pytest.raises(MissingReferenceError):
        _restock(station_context, "T404", DAY, "10")


def test_restock_store_failure_rolls_back_records_and_tank(station_context, monkeypatch):
    p1_before = _store(station_context, "P1", DAY, opening_stock=Decimal("800"), closing_stock=Decimal("800"))
    _store(station_context, "P2", DAY, opening_stock=Decimal("800"), closing_stock=Decimal("800"))
    group_before = stock_ledger.get_tank_group(station_context, STATION, "T1", DAY)

    original_upsert = data_manager.upsert_fuel_record
    calls = {"count": 0}

    def flaky_upsert(workbook, record):
        calls["count"] += 1
        if calls["count"] == 2:
            raise KeyError("FuelRecords")
        return original_upsert(workbook, record)

    monkeypatch.setattr(data_manager, "upsert_fuel_record", flaky_upsert)

    with pytest.raises(StoreFailure):
        _restock(station_context, "T1", DAY, "1000")

    assert _get(station_context, "P1", DAY) == p1_before
    assert stock_ledger.get_tank_group(station_context, STATION, "T1", DAY) == group_before


def test_restock_scenario_end_to_end(station_context):
    """Reading, restock, then a second reading on the restocked day."""

    day1 = DAY
    day2 = DAY + timedelta(days=1)

    first = _reading(station_context, "P3", day1, "1000", "1500").record
    assert (first.sales_volume, first.opening_stock, first.closing_stock) == (
        Decimal("500"),
        Decimal("0"),
        Decimal("0"),
    )

    assert stock_ledger.resolve_previous_day_stock(station_context, STATION, "P3", day2).opening_stock == Decimal("0")

    _restock(station_context, "T2", day2, "2000")
    restocked = _get(station_context, "P3", day2)
    assert (restocked.opening_stock, restocked.closing_stock) == (Decimal("2000"), Decimal("2000"))

    second = _reading(station_context, "P3", day2, "1500", "1700").record
    assert second.sales_volume == Decimal("200")
    assert second.opening_stock == Decimal("2000")
    assert second.closing_stock == Decimal("1800")


def test_restock_anchors_on_first_pump_with_history(station_context):
    """A never-read first pump must not zero out its sibling's stock."""

    _store(station_context, "P2", DAY, opening_stock=Decimal("5000"), closing_stock=Decimal("5000"))

    result = _restock(station_context, "T1", DAY, "100")

    assert result.previous_opening_stock == Decimal("5000")
    assert result.new_opening_stock == Decimal("5100")
    assert _get(station_context, "P2", DAY).opening_stock == Decimal("5100")
    assert [failure.pump_id for failure in result.failures] == ["P1"]
    assert stock_ledger.get_tank_group(station_context, STATION, "T1", DAY).opening_stock == Decimal("5100")


def test_restock_adds_amount_to_each_pumps_own_stock(station_context):
    _store(station_context, "P1", DAY, opening_stock=Decimal("3800"), closing_stock=Decimal("3800"))
    prior = DAY - timedelta(days=1)
    _store(station_context, "P2", prior, opening_stock=Decimal("4000"), sales_volume=Decimal("300"), closing_stock=Decimal("3700"))

    result = _restock(station_context, "T1", DAY, "1000")

    assert result.previous_opening_stock == Decimal("3800")
    assert result.new_opening_stock == Decimal("4800")
    assert _get(station_context, "P1", DAY).opening_stock == Decimal("4800")
    assert _get(station_context, "P2", prior).closing_stock == Decimal("4700")
    group = stock_ledger.get_tank_group(station_context, STATION, "T1", DAY)
    assert group.pump_opening_stock == {"P1": Decimal("4800"), "P2": Decimal("4700")}
    assert group.diverged is True


def test_restock_unexpected_error_restores_tank(station_context, monkeypatch):
    _store(station_context, "P1", DAY, opening_stock=Decimal("800"), closing_stock=Decimal("800"))
    before = stock_ledger.get_tank_group(station_context, STATION, "T1", DAY)

    def broken_upsert(workbook, record):
        raise RuntimeError("workbook gone")

    monkeypatch.setattr(data_manager, "upsert_fuel_record", broken_upsert)

    with pytest.raises(RuntimeError):
        _restock(station_context, "T1", DAY, "1000")

    restored = stock_ledger.get_tank_group(station_context, STATION, "T1", DAY)
    assert restored == before
    assert restored.opening_stock == Decimal("800")


# ---------------------------------------------------------------------------
# Monthly reconciliation
# ---------------------------------------------------------------------------

MONTH_START = date(2024, 4, 1)


def test_preview_requires_first_of_month(station_context):
    with pytest.raises(ReconciliationNotAllowed):
        stock_ledger.preview_reconciliation(station_context, STATION, "T2", date(2024, 4, 2), "550")


@pytest.mark.parametrize("real_stock", ["-1", "lots", None])
def test_preview_rejects_invalid_real_stock(station_context, real_stock):
    with pytest.raises(InvalidRealStock):
        stock_ledger.preview_reconciliation(station_context, STATION, "T2", MONTH_START, real_stock)


def test_reconciliation_scenario(station_context):
    _store(station_context, "P3", MONTH_START - timedelta(days=1), opening_stock=Decimal("600"), closing_stock=Decimal("500"))

    preview = stock_ledger.preview_reconciliation(station_context, STATION, "T2", MONTH_START, "550")
    assert preview.opening_stock == Decimal("500")
    assert preview.excess == Decimal("50")

    result = stock_ledger.confirm_reconciliation(
        station_context,
        stock_ledger.ReconcileCommand(STATION, "T2", MONTH_START, "550", timestamp=NOW),
    )

    assert result.preview == preview
    snapshot = stock_ledger.resolve_previous_day_stock(station_context, STATION, "P3", MONTH_START)
    assert snapshot.opening_stock == Decimal("550")
    audit = core_logic.list_monthly_stock(station_context, STATION)
    assert [(row.month_year, row.tank_id, row.excess) for row in audit] == [("2024-04", "T2", Decimal("50"))]


def test_reconciliation_updates_same_day_record(station_context):
    _store(
        station_context,
        "P3",
        MONTH_START,
        opening_stock=Decimal("500"),
        sales_volume=Decimal("120"),
        closing_stock=Decimal("380"),
    )

    stock_ledger.confirm_reconciliation(
        station_context,
        stock_ledger.ReconcileCommand(STATION, "T2", MONTH_START, Decimal("450"), timestamp=NOW),
    )

    record = _get(station_context, "P3", MONTH_START)
    assert record.opening_stock == Decimal("450")
    assert record.closing_stock == Decimal("330")
    assert record.input_mode == "manual"


def test_reconciliation_does_not_propagate_forward(station_context):
    _store(station_context, "P3", MONTH_START, opening_stock=Decimal("500"), closing_stock=Decimal("500"))
    tomorrow = _store(
        station_context, "P3", MONTH_START + timedelta(days=1), opening_stock=Decimal("500"), closing_stock=Decimal("500")
    )

    stock_ledger.confirm_reconciliation(
        station_context,
        stock_ledger.ReconcileCommand(STATION, "T2", MONTH_START, "700", timestamp=NOW),
    )

    assert _get(station_context, "P3", MONTH_START + timedelta(days=1)) == tomorrow


def test_reconciliation_without_history_raises(station_context):
    with pytest.raises(NoHistoryToReconcile):
        stock_ledger.confirm_reconciliation(
            station_context,
            stock_ledger.ReconcileCommand(STATION, "T2", MONTH_START, "100", timestamp=NOW),
        )
    assert core_logic.list_monthly_stock(station_context, STATION) == []


def test_reconciliation_skips_first_pump_without_history(station_context):
    _store(station_context, "P2", MONTH_START - timedelta(days=1), opening_stock=Decimal("700"), closing_stock=Decimal("600"))

    preview = stock_ledger.preview_reconciliation(station_context, STATION, "T1", MONTH_START, "650")
    assert preview.opening_stock == Decimal("600")
    assert preview.excess == Decimal("50")

    result = stock_ledger.confirm_reconciliation(
        station_context,
        stock_ledger.ReconcileCommand(STATION, "T1", MONTH_START, "650", timestamp=NOW),
    )

    assert [record.pump_id for record in result.updated_records] == ["P2"]
    assert isinstance(result.failures[0], NoHistoryToReconcile)
    assert result.failures[0].pump_id == "P1"
    assert result.audit.excess == Decimal("50")


def test_reconciliation_realigns_diverged_pumps(station_context):
    last_day = MONTH_START - timedelta(days=1)
    _store(station_context, "P1", last_day, opening_stock=Decimal("4000"), sales_volume=Decimal("200"), closing_stock=Decimal("3800"))
    _store(station_context, "P2", last_day, opening_stock=Decimal("4000"), sales_volume=Decimal("300"), closing_stock=Decimal("3700"))
    assert stock_ledger.get_tank_group(station_context, STATION, "T1", MONTH_START).diverged is True

    result = stock_ledger.confirm_reconciliation(
        station_context,
        stock_ledger.ReconcileCommand(STATION, "T1", MONTH_START, "3500", timestamp=NOW),
    )

    assert result.preview.excess == Decimal("-300")
    assert _get(station_context, "P1", last_day).closing_stock == Decimal("3500")
    assert _get(station_context, "P2", last_day).closing_stock == Decimal("3500")
    group = stock_ledger.get_tank_group(station_context, STATION, "T1", MONTH_START)
    assert group.opening_stock == Decimal("3500")
    assert group.diverged is False


# ---------------------------------------------------------------------------
# Seeding, listing, deletion, tank groups
# ---------------------------------------------------------------------------


def test_seed_creates_placeholders_from_prior_close(station_context):
    _store(station_context, "P1", DAY - timedelta(days=2), closing_stock=Decimal("700"))
    _store(station_context, "P3", DAY, opening_stock=Decimal("50"), closing_stock=Decimal("50"))

    created = stock_ledger.seed_daily_records(station_context, STATION, DAY, timestamp=NOW)

    assert [record.pump_id for record in created] == ["P1", "P2"]
    p1 = _get(station_context, "P1", DAY)
    assert p1.input_mode == "auto"
    assert p1.opening_stock == p1.closing_stock == Decimal("700")
    assert p1.meter_opening == p1.meter_closing == Decimal("0")
    assert _get(station_context, "P2", DAY).opening_stock == Decimal("0")
    assert _get(station_context, "P3", DAY).opening_stock == Decimal("50")
    assert stock_ledger.seed_daily_records(station_context, STATION, DAY, timestamp=NOW) == []


def test_list_fuel_records_orders_by_pump_number(station_context):
    for pump_id in ("P3", "P1", "P2"):
        _store(station_context, pump_id, DAY)

    records = stock_ledger.list_fuel_records(station_context, STATION, DAY)

    assert [record.pump_id for record in records] == ["P1", "P2", "P3"]


def test_delete_fuel_record_does_not_cascade(station_context):
    _reading(station_context, "P1", DAY, "1000", "1500")
    record_id = core_logic.fuel_record_id(STATION, "P1", DAY)

    stock_ledger.delete_fuel_record(station_context, record_id)

    assert _get(station_context, "P1", DAY) is None
    assert _get(station_context, "P1", DAY + timedelta(days=1)) is not None
    with pytest.raises(MissingReferenceError):
        stock_ledger.delete_fuel_record(station_context, record_id)


def test_tank_groups_aggregate_pumps(station_context):
    _store(station_context, "P1", DAY, opening_stock=Decimal("4000"), sales_volume=Decimal("300"), closing_stock=Decimal("3700"))
    _store(station_context, "P2", DAY, opening_stock=Decimal("4000"), sales_volume=Decimal("200"), closing_stock=Decimal("3800"))

    groups = stock_ledger.list_tank_groups(station_context, STATION, DAY)

    assert [group.tank_id for group in groups] == ["T1", "T2"]
    tank = groups[0]
    assert tank.pump_ids == ("P1", "P2")
    assert tank.pump_sales == {"P1": Decimal("300"), "P2": Decimal("200")}
    assert tank.sales_volume == Decimal("500")
    assert tank.opening_stock == Decimal("4000")
    assert tank.closing_stock == Decimal("3500")
    assert tank.max_capacity == Decimal("33000")
    assert tank.fill_percentage == Decimal("10.61")
    assert tank.pump_opening_stock == {"P1": Decimal("4000"), "P2": Decimal("4000")}
    assert tank.diverged is False


def test_tank_group_flags_pumps_whose_chains_drift_apart(station_context):
    """Each pump closes against its own meter, so siblings drift after a day of sales."""

    _store(station_context, "P1", DAY, opening_stock=Decimal("4000"), closing_stock=Decimal("4000"))
    _store(station_context, "P2", DAY, opening_stock=Decimal("4000"), closing_stock=Decimal("4000"))
    _reading(station_context, "P1", DAY, "0", "200")
    _reading(station_context, "P2", DAY, "0", "300")

    today = stock_ledger.get_tank_group(station_context, STATION, "T1", DAY)
    assert today.sales_volume == Decimal("500")
    assert today.closing_stock == Decimal("3500")
    assert today.diverged is False

    tomorrow_date = DAY + timedelta(days=1)
    assert _get(station_context, "P1", tomorrow_date).opening_stock == Decimal("3800")
    assert _get(station_context, "P2", tomorrow_date).opening_stock == Decimal("3700")
    tomorrow = stock_ledger.get_tank_group(station_context, STATION, "T1", tomorrow_date)
    assert tomorrow.pump_opening_stock == {"P1": Decimal("3800"), "P2": Decimal("3700")}
    assert tomorrow.diverged is True

    _restock(station_context, "T1", tomorrow_date, "1000")

    assert _get(station_context, "P1", tomorrow_date).opening_stock == Decimal("4800")
    assert _get(station_context, "P2", tomorrow_date).opening_stock == Decimal("4700")


def test_set_tank_capacity_updates_every_pump(station_context):
    stock_ledger.set_tank_capacity(station_context, STATION, "T1", Decimal("40000"))

    assert {pump.capacity for pump in core_logic.get_pumps_for_tank(station_context, STATION, "T1")} == {
        Decimal("40000")
    }
    assert stock_ledger.get_tank_group(station_context, STATION, "T1", DAY).max_capacity == Decimal("40000")


def test_set_tank_capacity_rejects_non_positive(station_context):
    with pytest.raises(ValueError):
        stock_ledger.set_tank_capacity(station_context, STATION, "T1", Decimal("0"))


# ---------------------------------------------------------------------------
# Transaction boundary
# ---------------------------------------------------------------------------


def test_transaction_rollback_restores_and_deletes(station_context):
    existing = _store(station_context, "P1", DAY, closing_stock=Decimal("10"))

    with pytest.raises(RuntimeError):
        with stock_ledger.LedgerTransaction(station_context, "test") as txn:
            txn.upsert(replace(existing, closing_stock=Decimal("99")))
            txn.upsert(
                replace(
                    existing,
                    record_id=core_logic.fuel_record_id(STATION, "P1", DAY + timedelta(days=1)),
                    record_date=DAY + timedelta(days=1),
                )
            )
            raise RuntimeError("boom")

    assert _get(station_context, "P1", DAY) == existing
    assert _get(station_context, "P1", DAY + timedelta(days=1)) is None


def test_failed_compensation_does_not_mask_original_error(station_context):
    ran = []

    def failing():
        raise StoreFailure("cannot undo")

    with pytest.raises(ValueError):
        with stock_ledger.LedgerTransaction(station_context, "test") as txn:
            txn.add_compensation("first", lambda: ran.append("first"))
            txn.add_compensation("second", failing)
            raise ValueError("original")

    assert ran == ["first"]
