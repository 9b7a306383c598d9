"""Data access layer for Station Ledger.

This module provides low-level helpers that read from and write to the
station workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating, or
   deleting individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_TANK_CAPACITY, SheetName


CONFIG_FILE_NAME = "config.ini"
STATIONS_SHEET = SheetName.STATIONS.value
PUMPS_SHEET = SheetName.PUMPS.value
PRODUCT_PRICES_SHEET = SheetName.PRODUCT_PRICES.value
FUEL_RECORDS_SHEET = SheetName.FUEL_RECORDS.value
MONTHLY_STOCK_SHEET = SheetName.MONTHLY_STOCK.value
EXPENSES_SHEET = SheetName.EXPENSES.value
STAFF_SHEET = SheetName.STAFF.value

# Column order of every worksheet; serializers below follow it exactly.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    STATIONS_SHEET: ["StationID", "StationName"],
    PUMPS_SHEET: ["PumpID", "StationID", "PumpNumber", "ProductType", "TankID", "Capacity"],
    PRODUCT_PRICES_SHEET: ["PriceID", "ProductType", "PricePerLitre", "EffectiveDate"],
    FUEL_RECORDS_SHEET: [
        "RecordID",
        "StationID",
        "PumpID",
        "ProductType",
        "RecordDate",
        "MeterOpening",
        "MeterClosing",
        "SalesVolume",
        "PricePerLitre",
        "TotalSales",
        "OpeningStock",
        "ClosingStock",
        "InputMode",
        "CreatedAt",
    ],
    MONTHLY_STOCK_SHEET: [
        "ReconciliationID",
        "StationID",
        "TankID",
        "ProductType",
        "MonthYear",
        "OpeningStock",
        "ActualStock",
        "Excess",
        "CreatedAt",
    ],
    EXPENSES_SHEET: [
        "ExpenseID",
        "StationID",
        "ExpenseDate",
        "Category",
        "Description",
        "Amount",
        "CreatedAt",
    ],
    STAFF_SHEET: [
        "StaffID",
        "StationID",
        "Name",
        "Position",
        "Phone",
        "SocialMedia",
        "Picture",
        "DateOfEmployment",
        "Birthday",
        "UpdatedAt",
    ],
}

RowT = TypeVar("RowT")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    station_name: str
    schema_version: str
    default_station_id: str
    default_tank_capacity: Decimal = DEFAULT_TANK_CAPACITY


@dataclass(frozen=True)
class StationRow:
    """In-memory view of a row from the ``Stations`` sheet."""

    station_id: str
    station_name: str


@dataclass(frozen=True)
class PumpRow:
    """In-memory view of a row from the ``Pumps`` sheet."""

    pump_id: str
    station_id: str
    pump_number: int
    product_type: str
    tank_id: str
    capacity: Optional[Decimal]


@dataclass(frozen=True)
class PriceRow:
    """In-memory view of a row from the ``ProductPrices`` sheet."""

    price_id: str
    product_type: str
    price_per_litre: Decimal
    effective_date: date


@dataclass(frozen=True)
class FuelRecordRow:
    """One daily stock record for a pump (the ledger's unit of storage)."""

    record_id: str
    station_id: str
    pump_id: str
    product_type: str
    record_date: date
    meter_opening: Decimal
    meter_closing: Decimal
    sales_volume: Decimal
    price_per_litre: Decimal
    total_sales: Decimal
    opening_stock: Decimal
    closing_stock: Decimal
    input_mode: str
    created_at: str


@dataclass(frozen=True)
class MonthlyStockRow:
    """In-memory view of a confirmed month-start reconciliation."""

    reconciliation_id: str
    station_id: str
    tank_id: str
    product_type: str
    month_year: str
    opening_stock: Decimal
    actual_stock: Decimal
    excess: Decimal
    created_at: str


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    station_id: str
    expense_date: date
    category: Optional[str]
    description: str
    amount: Decimal
    created_at: str


@dataclass(frozen=True)
class StaffRow:
    """In-memory view of a row from the ``Staff`` sheet."""

    staff_id: str
    station_id: str
    name: str
    position: str
    phone: Optional[str]
    social_media: Optional[str]
    picture: Optional[str]
    date_of_employment: Optional[date]
    birthday: Optional[date]
    updated_at: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.
            Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section must provide ``DataFile``, ``StationName`` and
    ``SchemaVersion``; ``[Defaults]`` must provide ``DefaultStation`` and may
    override ``DefaultTankCapacity``. Relative data file paths are expanded
    against ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory anchoring relative ``DataFile``
            entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``DefaultTankCapacity`` is not a positive number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        station_name = parser.get("System", "StationName")
        schema_version = parser.get("System", "SchemaVersion")
        default_station = parser.get("Defaults", "DefaultStation")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    capacity_raw = parser.get(
        "Defaults", "DefaultTankCapacity", fallback=str(DEFAULT_TANK_CAPACITY))
    default_capacity = to_decimal(capacity_raw)
    if default_capacity <= Decimal("0"):
        raise ValueError(f"DefaultTankCapacity must be positive, got {capacity_raw}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        station_name=station_name,
        schema_version=schema_version,
        default_station_id=default_station,
        default_tank_capacity=default_capacity,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the station workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str, deserializer: Callable[[Sequence[object]], RowT]) -> Iterable[RowT]:
    sheet = workbook[sheet_name]
    width = len(SHEET_COLUMNS[sheet_name])
    for raw in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserializer(raw)


def iter_stations(workbook: Workbook) -> Iterable[StationRow]:
    """Yield typed rows from the ``Stations`` worksheet."""

    return _iter_sheet(workbook, STATIONS_SHEET, deserialize_station)


def iter_pumps(workbook: Workbook) -> Iterable[PumpRow]:
    """Yield typed rows from the ``Pumps`` worksheet."""

    return _iter_sheet(workbook, PUMPS_SHEET, deserialize_pump)


def iter_prices(workbook: Workbook) -> Iterable[PriceRow]:
    """Yield typed rows from the ``ProductPrices`` worksheet."""

    return _iter_sheet(workbook, PRODUCT_PRICES_SHEET, deserialize_price)


def iter_fuel_records(workbook: Workbook) -> Iterable[FuelRecordRow]:
    """Stream daily stock records from the ``FuelRecords`` worksheet.

    Header and fully empty rows are skipped. Numeric columns become
    :class:`~decimal.Decimal` instances and ``RecordDate`` becomes a
    :class:`~datetime.date` regardless of whether Excel stored it as text or as
    a native date cell.
    """

    return _iter_sheet(workbook, FUEL_RECORDS_SHEET, deserialize_fuel_record)


def iter_monthly_stock(workbook: Workbook) -> Iterable[MonthlyStockRow]:
    """Yield typed rows from the ``MonthlyStock`` worksheet."""

    return _iter_sheet(workbook, MONTHLY_STOCK_SHEET, deserialize_monthly_stock)


def iter_expenses(workbook: Workbook) -> Iterable[ExpenseRow]:
    """Yield typed rows from the ``Expenses`` worksheet."""

    return _iter_sheet(workbook, EXPENSES_SHEET, deserialize_expense)


def iter_staff(workbook: Workbook) -> Iterable[StaffRow]:
    """Yield typed rows from the ``Staff`` worksheet."""

    return _iter_sheet(workbook, STAFF_SHEET, deserialize_staff)


def append_station(workbook: Workbook, record: StationRow) -> None:
    """Append a station record to the ``Stations`` worksheet."""

    workbook[STATIONS_SHEET].append(serialize_station(record))


def append_pump(workbook: Workbook, record: PumpRow) -> None:
    """Append a pump record to the ``Pumps`` worksheet."""

    workbook[PUMPS_SHEET].append(serialize_pump(record))


def append_price(workbook: Workbook, record: PriceRow) -> None:
    """Append a price observation to the ``ProductPrices`` worksheet."""

    workbook[PRODUCT_PRICES_SHEET].append(serialize_price(record))


def append_monthly_stock(workbook: Workbook, record: MonthlyStockRow) -> None:
    """Append a reconciliation audit row to the ``MonthlyStock`` worksheet."""

    workbook[MONTHLY_STOCK_SHEET].append(serialize_monthly_stock(record))


def append_expense(workbook: Workbook, record: ExpenseRow) -> None:
    """Append an expense record to the ``Expenses`` worksheet."""

    workbook[EXPENSES_SHEET].append(serialize_expense(record))


def append_staff(workbook: Workbook, record: StaffRow) -> None:
    """Append a staff member to the ``Staff`` worksheet."""

    workbook[STAFF_SHEET].append(serialize_staff(record))


def upsert_fuel_record(workbook: Workbook, record: FuelRecordRow) -> bool:
    """Insert or overwrite the row whose ``RecordID`` matches ``record``.

    Every column of an existing row is rewritten, so the stored row always
    equals the serialized dataclass afterwards.

    Args:
        workbook (Workbook): Workbook containing the ``FuelRecords`` sheet.
        record (FuelRecordRow): Complete record to persist.

    Returns:
        bool: ``True`` when a new row was appended, ``False`` when an existing
            row was overwritten.
    """

    sheet = workbook[FUEL_RECORDS_SHEET]
    values = serialize_fuel_record(record)
    row_index = locate_row(workbook, FUEL_RECORDS_SHEET, "RecordID", record.record_id)
    if row_index is None:
        sheet.append(values)
        return True

    for col, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=col, value=value)
    return False


def update_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for the row identified by ``key_value``.

    Only the specified fields are modified, leaving other columns untouched.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def update_pump(workbook: Workbook, pump_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing pump."""

    update_row(workbook, PUMPS_SHEET, "PumpID", pump_id, field_values=field_values)


def update_staff(workbook: Workbook, staff_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing staff member."""

    update_row(workbook, STAFF_SHEET, "StaffID", staff_id, field_values=field_values)


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> bool:
    """Remove the first row whose ``key_column`` equals ``key_value``.

    Returns:
        bool: ``True`` if a row was removed, ``False`` if nothing matched.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        return False
    workbook[sheet_name].delete_rows(row_index)
    log.debug("Deleted row %d from %s (%s=%s)", row_index, sheet_name, key_column, key_value)
    return True


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the key column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def _header_map(sheet) -> dict[Any, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def to_decimal(raw: object, default: Decimal = Decimal("0")) -> Decimal:
    """Normalize a worksheet cell into a :class:`~decimal.Decimal`.

    ``None`` and blank strings map to ``default``. Going through ``str`` keeps
    floats read back from Excel at their shortest representation.
    """

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    if isinstance(raw, Decimal):
        return raw
    return Decimal(str(raw).strip())


def to_date(raw: object) -> date:
    """Normalize ISO text or native Excel dates into :class:`~datetime.date`."""

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw).strip())


def _optional_date(raw: object) -> Optional[date]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    return to_date(raw)


def _optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_station(record: StationRow) -> list[object]:
    """Convert a station dataclass into the worksheet column ordering."""

    return [record.station_id, record.station_name]


def serialize_pump(record: PumpRow) -> list[object]:
    """Convert a pump dataclass into the worksheet column ordering."""

    return [
        record.pump_id,
        record.station_id,
        record.pump_number,
        record.product_type,
        record.tank_id,
        record.capacity,
    ]


def serialize_price(record: PriceRow) -> list[object]:
    """Convert a price dataclass into the worksheet column ordering."""

    return [
        record.price_id,
        record.product_type,
        record.price_per_litre,
        record.effective_date.isoformat(),
    ]


def serialize_fuel_record(record: FuelRecordRow) -> list[object]:
    """Convert a daily stock record into the ``FuelRecords`` column order.

    Dates are written as ISO text so lookups compare stable strings;
    :class:`~decimal.Decimal` values are preserved for Excel.
    """

    return [
        record.record_id,
        record.station_id,
        record.pump_id,
        record.product_type,
        record.record_date.isoformat(),
        record.meter_opening,
        record.meter_closing,
        record.sales_volume,
        record.price_per_litre,
        record.total_sales,
        record.opening_stock,
        record.closing_stock,
        record.input_mode,
        record.created_at,
    ]


def serialize_monthly_stock(record: MonthlyStockRow) -> list[object]:
    """Convert a reconciliation dataclass into the worksheet column ordering."""

    return [
        record.reconciliation_id,
        record.station_id,
        record.tank_id,
        record.product_type,
        record.month_year,
        record.opening_stock,
        record.actual_stock,
        record.excess,
        record.created_at,
    ]


def serialize_expense(record: ExpenseRow) -> list[object]:
    """Convert an expense dataclass into the worksheet column ordering."""

    return [
        record.expense_id,
        record.station_id,
        record.expense_date.isoformat(),
        record.category,
        record.description,
        record.amount,
        record.created_at,
    ]


def serialize_staff(record: StaffRow) -> list[object]:
    """Convert a staff dataclass into the worksheet column ordering."""

    return [
        record.staff_id,
        record.station_id,
        record.name,
        record.position,
        record.phone,
        record.social_media,
        record.picture,
        _iso(record.date_of_employment),
        _iso(record.birthday),
        record.updated_at,
    ]


def deserialize_station(raw_row: Sequence[object]) -> StationRow:
    """Convert a raw worksheet row into a station record."""

    station_id, station_name = raw_row[:2]
    return StationRow(station_id=str(station_id), station_name=str(station_name or ""))


def deserialize_pump(raw_row: Sequence[object]) -> PumpRow:
    """Convert a raw worksheet row into a pump record.

    A blank capacity cell stays ``None`` so callers can fall back to the
    configured default tank size.
    """

    pump_id, station_id, pump_number, product_type, tank_id, capacity_raw = raw_row[:6]
    capacity = to_decimal(capacity_raw) if capacity_raw not in (None, "") else None
    return PumpRow(
        pump_id=str(pump_id),
        station_id=str(station_id),
        pump_number=int(pump_number) if pump_number is not None else 0,
        product_type=str(product_type),
        tank_id=str(tank_id),
        capacity=capacity,
    )


def deserialize_price(raw_row: Sequence[object]) -> PriceRow:
    """Convert a raw worksheet row into a price record."""

    price_id, product_type, price_raw, effective_raw = raw_row[:4]
    return PriceRow(
        price_id=str(price_id),
        product_type=str(product_type),
        price_per_litre=to_decimal(price_raw),
        effective_date=to_date(effective_raw),
    )


def deserialize_fuel_record(raw_row: Sequence[object]) -> FuelRecordRow:
    """Convert a raw worksheet row into a strongly typed daily stock record.

    Blank numeric cells (derived rows never carry a closing meter, older rows
    may lack a price) are treated as zero.
    """

    (
        record_id,
        station_id,
        pump_id,
        product_type,
        record_date,
        meter_opening,
        meter_closing,
        sales_volume,
        price_per_litre,
        total_sales,
        opening_stock,
        closing_stock,
        input_mode,
        created_at,
    ) = raw_row[:14]

    return FuelRecordRow(
        record_id=str(record_id),
        station_id=str(station_id),
        pump_id=str(pump_id),
        product_type=str(product_type) if product_type is not None else "",
        record_date=to_date(record_date),
        meter_opening=to_decimal(meter_opening),
        meter_closing=to_decimal(meter_closing),
        sales_volume=to_decimal(sales_volume),
        price_per_litre=to_decimal(price_per_litre),
        total_sales=to_decimal(total_sales),
        opening_stock=to_decimal(opening_stock),
        closing_stock=to_decimal(closing_stock),
        input_mode=str(input_mode) if input_mode is not None else "",
        created_at=str(created_at) if created_at is not None else "",
    )


def deserialize_monthly_stock(raw_row: Sequence[object]) -> MonthlyStockRow:
    """Convert a raw worksheet row into a reconciliation record."""

    (
        reconciliation_id,
        station_id,
        tank_id,
        product_type,
        month_year,
        opening_stock,
        actual_stock,
        excess,
        created_at,
    ) = raw_row[:9]
    return MonthlyStockRow(
        reconciliation_id=str(reconciliation_id),
        station_id=str(station_id),
        tank_id=str(tank_id),
        product_type=str(product_type) if product_type is not None else "",
        month_year=str(month_year),
        opening_stock=to_decimal(opening_stock),
        actual_stock=to_decimal(actual_stock),
        excess=to_decimal(excess),
        created_at=str(created_at) if created_at is not None else "",
    )


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    """Convert a raw worksheet row into an expense record."""

    expense_id, station_id, expense_date, category, description, amount, created_at = raw_row[:7]
    return ExpenseRow(
        expense_id=str(expense_id),
        station_id=str(station_id),
        expense_date=to_date(expense_date),
        category=_optional_str(category),
        description=str(description) if description is not None else "",
        amount=to_decimal(amount),
        created_at=str(created_at) if created_at is not None else "",
    )


def deserialize_staff(raw_row: Sequence[object]) -> StaffRow:
    """Convert a raw worksheet row into a staff record."""

    (
        staff_id,
        station_id,
        name,
        position,
        phone,
        social_media,
        picture,
        date_of_employment,
        birthday,
        updated_at,
    ) = raw_row[:10]
    return StaffRow(
        staff_id=str(staff_id),
        station_id=str(station_id),
        name=str(name) if name is not None else "",
        position=str(position) if position is not None else "",
        phone=_optional_str(phone),
        social_media=_optional_str(social_media),
        picture=_optional_str(picture),
        date_of_employment=_optional_date(date_of_employment),
        birthday=_optional_date(birthday),
        updated_at=str(updated_at) if updated_at is not None else "",
    )
