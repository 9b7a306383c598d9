"""Stock ledger: daily tank stock rollover, restocks, and reconciliation.

Every pump owns one :class:`~station_ledger.data_manager.FuelRecordRow` per
calendar day. A day's opening stock is the previous day's closing stock, meter
readings deplete it, restocks add to it, and the first-of-month reconciliation
can overwrite it with a physically measured value. Multi-step writes run
inside a :class:`LedgerTransaction` so a failing step compensates the steps
already applied.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Type

from . import core_logic, data_manager, log
from .constants import InputMode
from .core_logic import RuntimeContext
from .errors import (
    InvalidReading,
    InvalidRealStock,
    InvalidRestockAmount,
    LedgerError,
    MissingReferenceError,
    NoHistoryError,
    NoHistoryToReconcile,
    NoHistoryToRestock,
    ReadingConflict,
    ReconciliationNotAllowed,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class MeterReadingCommand:
    station_id: str
    pump_id: str
    record_date: date
    meter_opening: Decimal
    meter_closing: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RestockCommand:
    station_id: str
    tank_id: str
    record_date: date
    amount: object
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ReconcileCommand:
    station_id: str
    tank_id: str
    record_date: date
    real_stock: object
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class StockSnapshot:
    """Stock and meter position of a pump at the start of a day."""

    opening_stock: Decimal
    sales_volume: Decimal
    closing_stock: Decimal
    opening_meter: Decimal
    closing_meter: Decimal
    source: str


@dataclass(frozen=True)
class TankGroup:
    """Pumps sharing one tank, aggregated for a single date.

    ``opening_stock`` is taken from the first pump with any history and
    ``sales_volume`` is the tank-level total of the per-pump ``pump_sales``.
    Each pump's record chain closes against its own meter only, so after a day
    of sales the pumps' stored opening stocks can differ; ``pump_opening_stock``
    keeps each one and ``diverged`` reports the drift until a reconciliation
    realigns them.
    """

    station_id: str
    tank_id: str
    product_type: str
    record_date: date
    pump_ids: Tuple[str, ...]
    opening_stock: Decimal
    closing_stock: Decimal
    sales_volume: Decimal
    pump_sales: Dict[str, Decimal] = field(compare=False)
    pump_opening_stock: Dict[str, Decimal] = field(compare=False)
    max_capacity: Decimal
    fill_percentage: Decimal

    @property
    def diverged(self) -> bool:
        return len(set(self.pump_opening_stock.values())) > 1


@dataclass(frozen=True)
class MeterReadingResult:
    record: data_manager.FuelRecordRow
    next_record: data_manager.FuelRecordRow
    placeholder_created: bool


@dataclass(frozen=True)
class RestockResult:
    tank_id: str
    previous_opening_stock: Decimal
    new_opening_stock: Decimal
    updated_records: Tuple[data_manager.FuelRecordRow, ...]
    failures: Tuple[NoHistoryError, ...]


@dataclass(frozen=True)
class ReconciliationPreview:
    tank_id: str
    record_date: date
    opening_stock: Decimal
    real_stock: Decimal
    excess: Decimal


@dataclass(frozen=True)
class ReconciliationResult:
    preview: ReconciliationPreview
    audit: data_manager.MonthlyStockRow
    updated_records: Tuple[data_manager.FuelRecordRow, ...]
    failures: Tuple[NoHistoryError, ...]


class LedgerTransaction:
    """Journal of ledger writes that can be undone in reverse order.

    The workbook has no multi-row transactions, so each successful upsert
    records the row version it replaced. Leaving the ``with`` block through an
    exception restores those versions (deleting rows that did not exist
    before) and runs any registered compensations, then lets the exception
    propagate.
    """

    def __init__(self, context: RuntimeContext, label: str) -> None:
        self._context = context
        self._label = label
        self._undo: List[Tuple[str, Callable[[], None]]] = []

    def __enter__(self) -> "LedgerTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            log.warning("Rolling back '%s' after %s: %s", self._label, exc_type.__name__, exc)
            self.rollback()
        return False

    def upsert(self, record: data_manager.FuelRecordRow) -> data_manager.FuelRecordRow:
        prior = core_logic.get_record(self._context, record.station_id, record.pump_id, record.record_date)
        core_logic.upsert_record(self._context, record)
        if prior is None:
            self._undo.append(
                (f"delete {record.record_id}", lambda: core_logic.delete_record(self._context, record.record_id))
            )
        else:
            self._undo.append((f"restore {record.record_id}", lambda: core_logic.upsert_record(self._context, prior)))
        return record

    def add_compensation(self, description: str, action: Callable[[], None]) -> None:
        self._undo.append((description, action))

    def rollback(self) -> None:
        """Undo journaled steps newest first.

        A step that fails to undo is logged and skipped so the remaining steps
        still get their chance; the caller's original error is what surfaces.
        """

        while self._undo:
            description, action = self._undo.pop()
            try:
                action()
            except LedgerError as exc:
                log.error("Compensation '%s' of '%s' failed: %s", description, self._label, exc)


def _coerce_decimal(raw: object, error_cls: Type[LedgerError], label: str) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise error_cls(f"{label} must be a number")
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise error_cls(f"{label} must be a number, got {raw!r}") from exc
    if not value.is_finite():
        raise error_cls(f"{label} must be a finite number, got {raw!r}")
    return value


def _closing(opening_stock: Decimal, sales_volume: Decimal) -> Decimal:
    return max(ZERO, opening_stock - sales_volume)


def _timestamp(candidate: Optional[datetime]) -> str:
    return core_logic._resolve_timestamp(candidate).isoformat()


def _placeholder(
    pump: data_manager.PumpRow,
    record_date: date,
    *,
    meter_opening: Decimal,
    stock: Decimal,
    created_at: str,
) -> data_manager.FuelRecordRow:
    return data_manager.FuelRecordRow(
        record_id=core_logic.fuel_record_id(pump.station_id, pump.pump_id, record_date),
        station_id=pump.station_id,
        pump_id=pump.pump_id,
        product_type=pump.product_type,
        record_date=record_date,
        meter_opening=meter_opening,
        meter_closing=ZERO,
        sales_volume=ZERO,
        price_per_litre=ZERO,
        total_sales=ZERO,
        opening_stock=stock,
        closing_stock=stock,
        input_mode=InputMode.AUTO.value,
        created_at=created_at,
    )


def _propagate_forward(
    pump: data_manager.PumpRow,
    today: data_manager.FuelRecordRow,
    created_at: str,
    tomorrow: Optional[data_manager.FuelRecordRow],
) -> data_manager.FuelRecordRow:
    """Return the next day's record re-anchored on ``today``'s closing values.

    When tomorrow already carries a closing meter its sales are recomputed
    against the new opening meter.

    Raises:
        ReadingConflict: If tomorrow's closing meter precedes today's closing
            meter.
    """

    next_date = today.record_date + timedelta(days=1)
    if tomorrow is None:
        return _placeholder(
            pump,
            next_date,
            meter_opening=today.meter_closing,
            stock=today.closing_stock,
            created_at=created_at,
        )

    sales_volume = tomorrow.sales_volume
    total_sales = tomorrow.total_sales
    if tomorrow.meter_closing > ZERO:
        if tomorrow.meter_closing < today.meter_closing:
            log.error(
                "Reading for %s conflicts with %s: closing meter %s precedes %s",
                today.record_id,
                tomorrow.record_id,
                tomorrow.meter_closing,
                today.meter_closing,
            )
            raise ReadingConflict(
                f"Closing meter {today.meter_closing} for {today.record_date.isoformat()} exceeds the "
                f"recorded closing meter {tomorrow.meter_closing} of {next_date.isoformat()}"
            )
        sales_volume = tomorrow.meter_closing - today.meter_closing
        total_sales = core_logic.quantize_money(sales_volume * tomorrow.price_per_litre)

    return replace(
        tomorrow,
        meter_opening=today.meter_closing,
        opening_stock=today.closing_stock,
        sales_volume=sales_volume,
        total_sales=total_sales,
        closing_stock=_closing(today.closing_stock, sales_volume),
    )


def record_meter_reading(context: RuntimeContext, command: MeterReadingCommand) -> MeterReadingResult:
    """Write a pump's daily meter reading and roll its stock forward one day.

    Opening stock is pinned once a record exists for the date; otherwise it is
    taken from yesterday's closing stock, or zero without history.

    Raises:
        MissingReferenceError: If the pump is unknown for the station.
        InvalidReading: If a meter is negative, non-numeric, or the closing
            meter precedes the opening meter.
        ReadingConflict: If the next day's closing meter contradicts this
            reading.
        StoreFailure: If the workbook rejects a write; earlier writes of the
            operation are compensated.
    """
    pump = core_logic.get_pump(context, command.station_id, command.pump_id)
    meter_opening = _coerce_decimal(command.meter_opening, InvalidReading, "Opening meter")
    meter_closing = _coerce_decimal(command.meter_closing, InvalidReading, "Closing meter")
    if meter_opening < ZERO or meter_closing < ZERO:
        log.error("Negative meter reading rejected for pump '%s'", pump.pump_id)
        raise InvalidReading("Meter readings cannot be negative")
    if meter_closing < meter_opening:
        log.error(
            "Closing meter %s below opening meter %s for pump '%s'",
            meter_closing,
            meter_opening,
            pump.pump_id,
        )
        raise InvalidReading(f"Closing meter {meter_closing} is less than opening meter {meter_opening}")

    sales_volume = max(ZERO, meter_closing - meter_opening)
    price = core_logic.get_latest_price(context, pump.product_type, command.record_date)
    if price is None:
        log.warning(
            "No %s price effective on %s; recording zero sales value",
            pump.product_type,
            command.record_date.isoformat(),
        )
        price = ZERO
    total_sales = core_logic.quantize_money(sales_volume * price)

    existing = core_logic.get_record(context, pump.station_id, pump.pump_id, command.record_date)
    if existing is not None:
        opening_stock = existing.opening_stock
    else:
        yesterday = core_logic.get_record(
            context, pump.station_id, pump.pump_id, command.record_date - timedelta(days=1)
        )
        opening_stock = yesterday.closing_stock if yesterday is not None else ZERO

    created_at = _timestamp(command.timestamp)
    record = data_manager.FuelRecordRow(
        record_id=core_logic.fuel_record_id(pump.station_id, pump.pump_id, command.record_date),
        station_id=pump.station_id,
        pump_id=pump.pump_id,
        product_type=pump.product_type,
        record_date=command.record_date,
        meter_opening=meter_opening,
        meter_closing=meter_closing,
        sales_volume=sales_volume,
        price_per_litre=price,
        total_sales=total_sales,
        opening_stock=opening_stock,
        closing_stock=_closing(opening_stock, sales_volume),
        input_mode=InputMode.MANUAL.value,
        created_at=existing.created_at if existing is not None else created_at,
    )

    tomorrow = core_logic.get_record(
        context, pump.station_id, pump.pump_id, command.record_date + timedelta(days=1)
    )
    next_record = _propagate_forward(pump, record, created_at, tomorrow)

    with LedgerTransaction(context, f"meter reading {record.record_id}") as txn:
        txn.upsert(record)
        txn.upsert(next_record)
    core_logic._invalidate_cache(context, "tank_groups")

    log.info(
        "Recorded reading for pump '%s' on %s: sales=%s opening=%s closing=%s",
        pump.pump_id,
        command.record_date.isoformat(),
        sales_volume,
        record.opening_stock,
        record.closing_stock,
    )
    return MeterReadingResult(record=record, next_record=next_record, placeholder_created=tomorrow is None)


def resolve_previous_day_stock(
    context: RuntimeContext, station_id: str, pump_id: str, record_date: date
) -> StockSnapshot:
    """Resolve the stock position a pump starts ``record_date`` with.

    Today's own record wins, then yesterday's record, then the latest record
    before the date. Without any history every value is zero.
    """
    today = core_logic.get_record(context, station_id, pump_id, record_date)
    if today is not None:
        return StockSnapshot(
            opening_stock=today.opening_stock,
            sales_volume=today.sales_volume,
            closing_stock=today.closing_stock,
            opening_meter=today.meter_opening,
            closing_meter=today.meter_closing,
            source="today",
        )

    prior = core_logic.get_record(context, station_id, pump_id, record_date - timedelta(days=1))
    source = "yesterday"
    if prior is None:
        prior = core_logic.get_most_recent_before(context, station_id, pump_id, record_date)
        source = "history"
    if prior is None:
        return StockSnapshot(ZERO, ZERO, ZERO, ZERO, ZERO, source="none")

    return StockSnapshot(
        opening_stock=prior.closing_stock,
        sales_volume=ZERO,
        closing_stock=prior.closing_stock,
        opening_meter=prior.meter_closing,
        closing_meter=prior.meter_closing,
        source=source,
    )


def _tank_pumps(context: RuntimeContext, station_id: str, tank_id: str) -> List[data_manager.PumpRow]:
    pumps = core_logic.get_pumps_for_tank(context, station_id, tank_id)
    if not pumps:
        log.warning("Tank lookup failed for id '%s' at station '%s'", tank_id, station_id)
        raise MissingReferenceError(f"Unknown tank id '{tank_id}' for station '{station_id}'")
    return pumps


def _fill_percentage(closing_stock: Decimal, capacity: Decimal) -> Decimal:
    return core_logic.quantize_money(closing_stock / capacity * HUNDRED)


def _build_tank_group(
    context: RuntimeContext, pumps: List[data_manager.PumpRow], record_date: date
) -> TankGroup:
    first = pumps[0]
    pump_sales: Dict[str, Decimal] = {}
    pump_opening_stock: Dict[str, Decimal] = {}
    for pump in pumps:
        snapshot = resolve_previous_day_stock(context, pump.station_id, pump.pump_id, record_date)
        pump_sales[pump.pump_id] = snapshot.sales_volume
        # Pumps that were never read know nothing about the tank.
        if snapshot.source != "none":
            pump_opening_stock[pump.pump_id] = snapshot.opening_stock

    opening_stock = next(iter(pump_opening_stock.values()), ZERO)
    if len(set(pump_opening_stock.values())) > 1:
        log.warning(
            "Pumps of tank '%s' disagree on opening stock for %s: %s",
            first.tank_id,
            record_date.isoformat(),
            ", ".join(f"{pump_id}={stock}" for pump_id, stock in pump_opening_stock.items()),
        )
    sales_volume = sum(pump_sales.values(), ZERO)
    closing_stock = _closing(opening_stock, sales_volume)
    capacity = first.capacity or context.settings.default_tank_capacity
    return TankGroup(
        station_id=first.station_id,
        tank_id=first.tank_id,
        product_type=first.product_type,
        record_date=record_date,
        pump_ids=tuple(pump.pump_id for pump in pumps),
        opening_stock=opening_stock,
        closing_stock=closing_stock,
        sales_volume=sales_volume,
        pump_sales=pump_sales,
        pump_opening_stock=pump_opening_stock,
        max_capacity=capacity,
        fill_percentage=_fill_percentage(closing_stock, capacity),
    )


def get_tank_group(context: RuntimeContext, station_id: str, tank_id: str, record_date: date) -> TankGroup:
    """Return the cached aggregate of ``tank_id`` for ``record_date``.

    Raises:
        MissingReferenceError: If no pump draws from the tank.
    """
    bucket = core_logic._get_cache_bucket(context, "tank_groups")
    key = (station_id, tank_id, record_date)
    group = bucket.get(key)
    if group is None:
        group = _build_tank_group(context, _tank_pumps(context, station_id, tank_id), record_date)
        bucket[key] = group
    return group


def list_tank_groups(context: RuntimeContext, station_id: str, record_date: date) -> List[TankGroup]:
    """Return every tank of a station for a date, ordered by lowest pump number."""
    tank_ids: List[str] = []
    for pump in core_logic.list_pumps(context, station_id):
        if pump.tank_id not in tank_ids:
            tank_ids.append(pump.tank_id)
    return [get_tank_group(context, station_id, tank_id, record_date) for tank_id in tank_ids]


@contextmanager
def _optimistic_tank_state(
    context: RuntimeContext, group: TankGroup, adjust: Callable[[Decimal], Decimal]
) -> Iterator[TankGroup]:
    """Publish the expected tank state before writing, restore it on any failure."""

    bucket = core_logic._get_cache_bucket(context, "tank_groups")
    key = (group.station_id, group.tank_id, group.record_date)
    opening_stock = adjust(group.opening_stock)
    closing_stock = _closing(opening_stock, group.sales_volume)
    optimistic = replace(
        group,
        opening_stock=opening_stock,
        closing_stock=closing_stock,
        pump_opening_stock={pump_id: adjust(stock) for pump_id, stock in group.pump_opening_stock.items()},
        fill_percentage=_fill_percentage(closing_stock, group.max_capacity),
    )
    bucket[key] = optimistic
    try:
        yield optimistic
    except Exception:
        core_logic._get_cache_bucket(context, "tank_groups")[key] = group
        log.warning("Restored tank '%s' to opening stock %s", group.tank_id, group.opening_stock)
        raise


def _apply_tank_opening(
    context: RuntimeContext,
    txn: LedgerTransaction,
    pumps: List[data_manager.PumpRow],
    record_date: date,
    adjust: Callable[[Decimal], Decimal],
    failure_cls: Type[NoHistoryError],
    *,
    retag_auto: bool,
) -> Tuple[List[data_manager.FuelRecordRow], List[NoHistoryError]]:
    """Rewrite every pump's opening stock for ``record_date`` through ``adjust``.

    ``adjust`` maps the pump's own current opening stock to the new one.
    Pumps without a same-day record get the closing stock of their latest
    earlier record rewritten instead; pumps without any history are reported
    in the returned failures and skipped.
    """

    updated: List[data_manager.FuelRecordRow] = []
    failures: List[NoHistoryError] = []
    for pump in pumps:
        record = core_logic.get_record(context, pump.station_id, pump.pump_id, record_date)
        if record is not None:
            input_mode = record.input_mode
            if retag_auto and input_mode == InputMode.AUTO.value:
                input_mode = InputMode.RESTOCK.value
            opening_stock = adjust(record.opening_stock)
            revised = replace(
                record,
                opening_stock=opening_stock,
                closing_stock=_closing(opening_stock, record.sales_volume),
                input_mode=input_mode,
            )
        else:
            prior = core_logic.get_most_recent_before(context, pump.station_id, pump.pump_id, record_date)
            if prior is None:
                failure = failure_cls(pump.pump_id)
                log.warning("%s", failure)
                failures.append(failure)
                continue
            revised = replace(prior, closing_stock=adjust(prior.closing_stock))
        updated.append(txn.upsert(revised))
    return updated, failures


def restock_tank(context: RuntimeContext, command: RestockCommand) -> RestockResult:
    """Add a delivered volume to the tank's opening stock for a date.

    Every pump with history gains exactly ``amount`` on its own opening stock,
    so pumps that drifted apart keep their difference.

    Raises:
        InvalidRestockAmount: If the amount is non-numeric or not positive.
        MissingReferenceError: If the tank has no pumps.
        NoHistoryToRestock: If no pump of the tank could be anchored.
        StoreFailure: If the workbook rejects a write; the tank aggregate and
            any written records are restored.
    """
    amount = _coerce_decimal(command.amount, InvalidRestockAmount, "Restock amount")
    if amount <= ZERO:
        log.error("Restock amount rejected for tank '%s': %s", command.tank_id, amount)
        raise InvalidRestockAmount(f"Restock amount must be greater than zero, got {amount}")

    pumps = _tank_pumps(context, command.station_id, command.tank_id)
    group = get_tank_group(context, command.station_id, command.tank_id, command.record_date)
    new_opening_stock = group.opening_stock + amount

    def add_delivery(current: Decimal) -> Decimal:
        return current + amount

    with _optimistic_tank_state(context, group, add_delivery):
        with LedgerTransaction(context, f"restock {command.tank_id}") as txn:
            updated, failures = _apply_tank_opening(
                context,
                txn,
                pumps,
                command.record_date,
                add_delivery,
                NoHistoryToRestock,
                retag_auto=True,
            )
            if not updated:
                raise failures[0]

    log.info(
        "Restocked tank '%s' with %s litres on %s: opening %s -> %s",
        command.tank_id,
        amount,
        command.record_date.isoformat(),
        group.opening_stock,
        new_opening_stock,
    )
    return RestockResult(
        tank_id=command.tank_id,
        previous_opening_stock=group.opening_stock,
        new_opening_stock=new_opening_stock,
        updated_records=tuple(updated),
        failures=tuple(failures),
    )


def preview_reconciliation(
    context: RuntimeContext, station_id: str, tank_id: str, record_date: date, real_stock: object
) -> ReconciliationPreview:
    """Compare a measured tank level with the ledger's opening stock.

    Raises:
        ReconciliationNotAllowed: If ``record_date`` is not the first of a month.
        InvalidRealStock: If ``real_stock`` is non-numeric or negative.
        MissingReferenceError: If the tank has no pumps.
    """
    if record_date.day != 1:
        log.error("Reconciliation attempted on %s", record_date.isoformat())
        raise ReconciliationNotAllowed("Stock can only be reconciled on the first day of a month")
    measured = _coerce_decimal(real_stock, InvalidRealStock, "Real stock")
    if measured < ZERO:
        log.error("Negative real stock rejected for tank '%s': %s", tank_id, measured)
        raise InvalidRealStock(f"Real stock cannot be negative, got {measured}")

    group = get_tank_group(context, station_id, tank_id, record_date)
    return ReconciliationPreview(
        tank_id=tank_id,
        record_date=record_date,
        opening_stock=group.opening_stock,
        real_stock=measured,
        excess=measured - group.opening_stock,
    )


def confirm_reconciliation(context: RuntimeContext, command: ReconcileCommand) -> ReconciliationResult:
    """Overwrite the tank's opening stock with the measured value and audit it.

    Later days are not re-propagated; the next meter reading re-anchors them.

    Raises:
        ReconciliationNotAllowed: If the date is not the first of a month.
        InvalidRealStock: If the real stock is non-numeric or negative.
        NoHistoryToReconcile: If no pump of the tank could be anchored.
        StoreFailure: If the workbook rejects a write.
    """
    preview = preview_reconciliation(
        context, command.station_id, command.tank_id, command.record_date, command.real_stock
    )
    pumps = _tank_pumps(context, command.station_id, command.tank_id)
    group = get_tank_group(context, command.station_id, command.tank_id, command.record_date)
    when = core_logic._resolve_timestamp(command.timestamp)
    audit = data_manager.MonthlyStockRow(
        reconciliation_id=core_logic.generate_id("REC", when=when),
        station_id=command.station_id,
        tank_id=command.tank_id,
        product_type=group.product_type,
        month_year=command.record_date.strftime("%Y-%m"),
        opening_stock=preview.opening_stock,
        actual_stock=preview.real_stock,
        excess=preview.excess,
        created_at=when.isoformat(),
    )

    def measured(_current: Decimal) -> Decimal:
        return preview.real_stock

    with _optimistic_tank_state(context, group, measured):
        with LedgerTransaction(context, f"reconcile {command.tank_id}") as txn:
            updated, failures = _apply_tank_opening(
                context,
                txn,
                pumps,
                command.record_date,
                measured,
                NoHistoryToReconcile,
                retag_auto=False,
            )
            if not updated:
                raise failures[0]
            core_logic.append_monthly_stock(context, audit)

    log.info(
        "Reconciled tank '%s' for %s: opening %s, actual %s, excess %s",
        command.tank_id,
        audit.month_year,
        preview.opening_stock,
        preview.real_stock,
        preview.excess,
    )
    return ReconciliationResult(
        preview=preview,
        audit=audit,
        updated_records=tuple(updated),
        failures=tuple(failures),
    )


def seed_daily_records(
    context: RuntimeContext, station_id: str, record_date: date, *, timestamp: Optional[datetime] = None
) -> List[data_manager.FuelRecordRow]:
    """Create ``auto`` rows for every pump still missing a record on ``record_date``.

    Each placeholder carries the pump's resolved prior closing stock as both
    opening and closing stock. Existing records are left untouched.
    """
    core_logic.get_station(context, station_id)
    created_at = _timestamp(timestamp)
    created: List[data_manager.FuelRecordRow] = []
    with LedgerTransaction(context, f"seed {station_id} {record_date.isoformat()}") as txn:
        for pump in core_logic.list_pumps(context, station_id):
            if core_logic.get_record(context, station_id, pump.pump_id, record_date) is not None:
                continue
            snapshot = resolve_previous_day_stock(context, station_id, pump.pump_id, record_date)
            created.append(
                txn.upsert(
                    _placeholder(pump, record_date, meter_opening=ZERO, stock=snapshot.closing_stock, created_at=created_at)
                )
            )
    if created:
        core_logic._invalidate_cache(context, "tank_groups")
        log.info("Seeded %d placeholder records for %s", len(created), record_date.isoformat())
    return created


def list_fuel_records(context: RuntimeContext, station_id: str, record_date: date) -> List[data_manager.FuelRecordRow]:
    """Return a station's records for a date ordered by pump number."""
    order = {pump.pump_id: pump.pump_number for pump in core_logic.list_pumps(context, station_id)}
    records = core_logic.list_records_for_date(context, station_id, record_date)
    return sorted(records, key=lambda row: (row.pump_id not in order, order.get(row.pump_id, 0), row.pump_id))


def delete_fuel_record(context: RuntimeContext, record_id: str) -> None:
    """Delete one daily record. Neighbouring days keep their stored values."""
    core_logic.delete_record(context, record_id)
    core_logic._invalidate_cache(context, "tank_groups")
    log.info("Deleted fuel record '%s'", record_id)


def set_tank_capacity(context: RuntimeContext, station_id: str, tank_id: str, capacity: Decimal) -> List[data_manager.PumpRow]:
    """Set the capacity of every pump drawing from ``tank_id``.

    Raises:
        ValueError: If ``capacity`` is not positive.
        MissingReferenceError: If the tank has no pumps.
    """
    core_logic.require_positive_quantity(capacity)
    pumps = _tank_pumps(context, station_id, tank_id)
    for pump in pumps:
        core_logic.update_pump_capacity(context, pump.pump_id, capacity)
    core_logic._invalidate_cache(context, "tank_groups")
    log.info("Set capacity of tank '%s' to %s litres", tank_id, capacity)
    return core_logic.get_pumps_for_tank(context, station_id, tank_id)
