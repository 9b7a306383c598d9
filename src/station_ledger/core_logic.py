"""Runtime services for Station Ledger.

This module owns the runtime context shared by every business module: config
and workbook loading, per-context caches, persistence, the pump/tank
directory, the price catalog, and the record store operations the stock
ledger is built on. All workbook I/O goes through the Data Access Layer (DAL).
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, MONEY_QUANTUM, ProductType
from .errors import BusinessRuleViolation, MissingReferenceError, StoreFailure


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the ledger."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` unchanged, or the current UTC time when ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are plain dictionaries keyed by domain area (stations, pumps,
    prices, fuel records, tank groups) holding precomputed query results so the
    workbook is not rescanned on every lookup.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored, so callers can request targeted invalidation
    without checking what has been populated.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


@contextmanager
def _record_store(operation: str) -> Iterator[None]:
    """Translate low-level workbook failures into :class:`StoreFailure`.

    Missing sheets or columns surface from openpyxl as ``KeyError``, unreadable
    cells as ``ValueError`` or decimal errors, and disk problems as ``OSError``.
    """

    try:
        yield
    except (KeyError, ValueError, ArithmeticError, OSError) as exc:
        log.error("Record store operation '%s' failed: %s", operation, exc)
        raise StoreFailure(f"Record store operation '{operation}' failed: {exc}") from exc


def _ensure_stations_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "stations")
    if "all" not in bucket:
        with _record_store("load stations"):
            all_stations = list(data_manager.iter_stations(context.workbook))
        bucket["all"] = all_stations
        bucket["by_id"] = {station.station_id: station for station in all_stations}
    return bucket


def _ensure_pumps_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the pump directory bucket on demand.

    Besides the full list the bucket carries a ``by_id`` lookup and a
    ``by_station`` mapping ordered by pump number, which is the order every
    operator-facing listing uses.
    """

    bucket = _get_cache_bucket(context, "pumps")
    if "all" not in bucket:
        with _record_store("load pumps"):
            all_pumps = list(data_manager.iter_pumps(context.workbook))
        by_station: Dict[str, List[data_manager.PumpRow]] = {}
        for pump in sorted(all_pumps, key=lambda row: row.pump_number):
            by_station.setdefault(pump.station_id, []).append(pump)
        bucket["all"] = all_pumps
        bucket["by_id"] = {pump.pump_id: pump for pump in all_pumps}
        bucket["by_station"] = by_station
        log.debug("Populated pumps cache with %d entries", len(all_pumps))
    return bucket


def _ensure_prices_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "prices")
    if "all" not in bucket:
        with _record_store("load prices"):
            all_prices = list(data_manager.iter_prices(context.workbook))
        by_product: Dict[str, List[data_manager.PriceRow]] = {}
        for price in sorted(all_prices, key=lambda row: row.effective_date):
            by_product.setdefault(price.product_type, []).append(price)
        bucket["all"] = all_prices
        bucket["by_product"] = by_product
    return bucket


def _ensure_fuel_records_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the daily stock record bucket on demand.

    ``by_pump`` maps ``(station_id, pump_id)`` to that pump's records in date
    order, which serves point, range, and most-recent-before lookups alike.
    """

    bucket = _get_cache_bucket(context, "fuel_records")
    if "all" not in bucket:
        with _record_store("load fuel records"):
            all_records = list(data_manager.iter_fuel_records(context.workbook))
        by_pump: Dict[tuple[str, str], List[data_manager.FuelRecordRow]] = {}
        for record in sorted(all_records, key=lambda row: row.record_date):
            by_pump.setdefault((record.station_id, record.pump_id), []).append(record)
        bucket["all"] = all_records
        bucket["by_id"] = {record.record_id: record for record in all_records}
        bucket["by_pump"] = by_pump
        log.debug("Populated fuel records cache with %d entries", len(all_records))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context with immutable settings, the open workbook and
            an empty cache store.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is produced, so cached data and optimistic
    tank state from the previous context are dropped with it.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``."""
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def fuel_record_id(station_id: str, pump_id: str, record_date: date) -> str:
    """Return the natural key of the daily record for a pump and date.

    One record exists per (station, pump, date), so deriving the identifier
    from that triple turns every write into an upsert.
    """
    return f"{station_id}:{pump_id}:{record_date.isoformat()}"


def quantize_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to ``MONEY_QUANTUM`` using half-up rounding."""
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_product_type(product_type: str) -> ProductType:
    """Resolve ``product_type`` into :class:`ProductType` or raise."""
    try:
        return ProductType(product_type)
    except ValueError as exc:
        log.error("Unsupported product type provided: %s", product_type)
        raise BusinessRuleViolation(f"Unsupported product type: {product_type}") from exc


# ---------------------------------------------------------------------------
# Station and pump directory
# ---------------------------------------------------------------------------


def list_stations(context: RuntimeContext) -> List[data_manager.StationRow]:
    """Return every registered station in sheet order."""
    return list(_ensure_stations_cache(context)["all"])


def get_station(context: RuntimeContext, station_id: str) -> data_manager.StationRow:
    """Resolve a station by identifier.

    Raises:
        MissingReferenceError: If ``station_id`` is unknown.
    """
    try:
        return _ensure_stations_cache(context)["by_id"][station_id]
    except KeyError as exc:
        log.warning("Station lookup failed for id '%s'", station_id)
        raise MissingReferenceError(f"Unknown station id: {station_id}") from exc


def add_station(context: RuntimeContext, *, station_id: str, station_name: str) -> data_manager.StationRow:
    """Register a new station.

    Raises:
        BusinessRuleViolation: If the identifier is already taken.
    """
    if station_id in _ensure_stations_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Station '{station_id}' already exists")
    station = data_manager.StationRow(station_id=station_id, station_name=station_name)
    with _record_store("append station"):
        data_manager.append_station(context.workbook, station)
    _invalidate_cache(context, "stations")
    log.info("Registered station '%s' (%s)", station_id, station_name)
    return station


def list_pumps(context: RuntimeContext, station_id: str) -> List[data_manager.PumpRow]:
    """Return the pumps of a station ordered by pump number."""
    return list(_ensure_pumps_cache(context)["by_station"].get(station_id, []))


def get_pump(context: RuntimeContext, station_id: str, pump_id: str) -> data_manager.PumpRow:
    """Resolve a pump that belongs to ``station_id``.

    Raises:
        MissingReferenceError: If the pump is unknown or registered elsewhere.
    """
    pump = _ensure_pumps_cache(context)["by_id"].get(pump_id)
    if pump is None or pump.station_id != station_id:
        log.warning("Pump lookup failed for id '%s' at station '%s'", pump_id, station_id)
        raise MissingReferenceError(f"Unknown pump id '{pump_id}' for station '{station_id}'")
    return pump


def get_pumps_for_tank(context: RuntimeContext, station_id: str, tank_id: str) -> List[data_manager.PumpRow]:
    """Return the pumps drawing from ``tank_id``, ordered by pump number."""
    return [pump for pump in list_pumps(context, station_id) if pump.tank_id == tank_id]


def add_pump(
    context: RuntimeContext,
    *,
    station_id: str,
    pump_id: str,
    pump_number: int,
    product_type: str,
    tank_id: str,
    capacity: Optional[Decimal] = None,
) -> data_manager.PumpRow:
    """Register a pump against an existing station.

    Pumps sharing a ``tank_id`` must dispense the same product because they
    draw from one physical tank.

    Raises:
        MissingReferenceError: If the station is unknown.
        BusinessRuleViolation: If the pump id is taken, the product type is
            unsupported, or the tank already serves another product.
        ValueError: If ``capacity`` is given and not positive.
    """
    get_station(context, station_id)
    product = require_product_type(product_type)
    if pump_id in _ensure_pumps_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Pump '{pump_id}' already exists")
    for sibling in get_pumps_for_tank(context, station_id, tank_id):
        if sibling.product_type != product.value:
            raise BusinessRuleViolation(
                f"Tank '{tank_id}' already holds {sibling.product_type}, not {product.value}"
            )
    if capacity is not None:
        require_positive_quantity(capacity)

    pump = data_manager.PumpRow(
        pump_id=pump_id,
        station_id=station_id,
        pump_number=pump_number,
        product_type=product.value,
        tank_id=tank_id,
        capacity=capacity,
    )
    with _record_store("append pump"):
        data_manager.append_pump(context.workbook, pump)
    _invalidate_cache(context, "pumps", "tank_groups")
    log.info("Registered pump '%s' on tank '%s' at station '%s'", pump_id, tank_id, station_id)
    return pump


def update_pump_capacity(context: RuntimeContext, pump_id: str, capacity: Decimal) -> None:
    """Overwrite the stored capacity of a single pump."""
    with _record_store("update pump"):
        data_manager.update_pump(context.workbook, pump_id, field_values={"Capacity": capacity})
    _invalidate_cache(context, "pumps")


# ---------------------------------------------------------------------------
# Price catalog
# ---------------------------------------------------------------------------


def set_price(
    context: RuntimeContext,
    *,
    product_type: str,
    price_per_litre: Decimal,
    effective_date: date,
    timestamp: Optional[datetime] = None,
) -> data_manager.PriceRow:
    """Append a new effective price for a product.

    Prices are never edited in place; the catalog keeps the history and
    :func:`get_latest_price` picks the applicable entry.
    """
    product = require_product_type(product_type)
    require_nonnegative_money(price_per_litre)
    price = data_manager.PriceRow(
        price_id=generate_id("PR", when=_resolve_timestamp(timestamp)),
        product_type=product.value,
        price_per_litre=price_per_litre,
        effective_date=effective_date,
    )
    with _record_store("append price"):
        data_manager.append_price(context.workbook, price)
    _invalidate_cache(context, "prices")
    log.info(
        "Set %s price to %s effective %s",
        product.value,
        price_per_litre,
        effective_date.isoformat(),
    )
    return price


def list_prices(context: RuntimeContext) -> List[data_manager.PriceRow]:
    """Return the full price history ordered by effective date."""
    return sorted(_ensure_prices_cache(context)["all"], key=lambda row: row.effective_date)


def get_latest_price(context: RuntimeContext, product_type: str, as_of: date) -> Optional[Decimal]:
    """Return the newest price for ``product_type`` effective on or before ``as_of``.

    When several rows share the winning effective date the last one written
    wins. ``None`` signals that the catalog has no applicable price.
    """
    history = _ensure_prices_cache(context)["by_product"].get(product_type, [])
    applicable = [price for price in history if price.effective_date <= as_of]
    if not applicable:
        return None
    return applicable[-1].price_per_litre


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------


def get_record(
    context: RuntimeContext, station_id: str, pump_id: str, record_date: date
) -> Optional[data_manager.FuelRecordRow]:
    """Point read of the daily record for a pump and date."""
    by_id = _ensure_fuel_records_cache(context)["by_id"]
    return by_id.get(fuel_record_id(station_id, pump_id, record_date))


def get_records_in_range(
    context: RuntimeContext, station_id: str, pump_id: str, date_from: date, date_to: date
) -> List[data_manager.FuelRecordRow]:
    """Return a pump's records with ``date_from <= record_date <= date_to``."""
    history = _ensure_fuel_records_cache(context)["by_pump"].get((station_id, pump_id), [])
    return [record for record in history if date_from <= record.record_date <= date_to]


def get_most_recent_before(
    context: RuntimeContext, station_id: str, pump_id: str, record_date: date
) -> Optional[data_manager.FuelRecordRow]:
    """Return the latest record of a pump dated strictly before ``record_date``."""
    history = _ensure_fuel_records_cache(context)["by_pump"].get((station_id, pump_id), [])
    earlier = [record for record in history if record.record_date < record_date]
    return earlier[-1] if earlier else None


def list_records_for_date(
    context: RuntimeContext, station_id: str, record_date: date
) -> List[data_manager.FuelRecordRow]:
    """Return every record of a station for a single date."""
    return [
        record
        for record in _ensure_fuel_records_cache(context)["all"]
        if record.station_id == station_id and record.record_date == record_date
    ]


def list_station_records(context: RuntimeContext, station_id: str) -> List[data_manager.FuelRecordRow]:
    """Return every record of a station in date order."""
    return sorted(
        (record for record in _ensure_fuel_records_cache(context)["all"] if record.station_id == station_id),
        key=lambda row: row.record_date,
    )


def upsert_record(context: RuntimeContext, record: data_manager.FuelRecordRow) -> data_manager.FuelRecordRow:
    """Insert or overwrite a daily record keyed by its ``record_id``.

    Raises:
        StoreFailure: If the workbook rejects the write.
    """
    with _record_store("upsert record"):
        inserted = data_manager.upsert_fuel_record(context.workbook, record)
    _invalidate_cache(context, "fuel_records")
    log.debug(
        "%s record '%s' (opening=%s closing=%s mode=%s)",
        "Inserted" if inserted else "Updated",
        record.record_id,
        record.opening_stock,
        record.closing_stock,
        record.input_mode,
    )
    return record


def delete_record(context: RuntimeContext, record_id: str) -> None:
    """Delete a daily record by identifier. Neighbouring days are untouched.

    Raises:
        MissingReferenceError: If no record carries ``record_id``.
        StoreFailure: If the workbook rejects the delete.
    """
    with _record_store("delete record"):
        removed = data_manager.delete_row(
            context.workbook, data_manager.FUEL_RECORDS_SHEET, "RecordID", record_id
        )
    if not removed:
        raise MissingReferenceError(f"Unknown fuel record id: {record_id}")
    _invalidate_cache(context, "fuel_records")


def append_monthly_stock(context: RuntimeContext, audit: data_manager.MonthlyStockRow) -> data_manager.MonthlyStockRow:
    """Append a reconciliation audit row to the ``MonthlyStock`` sheet."""
    with _record_store("append monthly stock"):
        data_manager.append_monthly_stock(context.workbook, audit)
    _invalidate_cache(context, "monthly_stock")
    return audit


def list_monthly_stock(context: RuntimeContext, station_id: str) -> List[data_manager.MonthlyStockRow]:
    """Return a station's reconciliation audit trail in the order it was written."""
    bucket = _get_cache_bucket(context, "monthly_stock")
    if "all" not in bucket:
        with _record_store("load monthly stock"):
            bucket["all"] = list(data_manager.iter_monthly_stock(context.workbook))
    return [row for row in bucket["all"] if row.station_id == station_id]
