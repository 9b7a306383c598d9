"""Command-line entry points for Station Ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, expenses, log, reports, staff, stock_ledger
from .constants import ExpenseCategory, ProductType
from .errors import BusinessRuleViolation, StoreFailure


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    persists: bool = True


def parse_decimal(raw: str) -> Decimal:
    """argparse ``type`` converting text into a finite :class:`Decimal`."""
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {raw!r}") from exc
    if not value.is_finite():
        raise argparse.ArgumentTypeError(f"invalid number: {raw!r}")
    return value


def parse_date(raw: str) -> date:
    """argparse ``type`` converting ``YYYY-MM-DD`` text into a date."""
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="station-cli",
        description="Command-line tools for the Station Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as readings and restocks."""
    specs = {
        "add-station": register_add_station_command(subparsers),
        "add-pump": register_add_pump_command(subparsers),
        "set-price": register_set_price_command(subparsers),
        "reading": register_reading_command(subparsers),
        "seed": register_seed_command(subparsers),
        "delete-record": register_delete_record_command(subparsers),
        "restock": register_restock_command(subparsers),
        "reconcile": register_reconcile_command(subparsers),
        "set-capacity": register_set_capacity_command(subparsers),
        "expense": register_expense_command(subparsers),
        "fuel-collection": register_fuel_collection_command(subparsers),
        "delete-expense": register_delete_expense_command(subparsers),
        "add-staff": register_add_staff_command(subparsers),
        "update-staff": register_update_staff_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "pumps": register_pumps_command(subparsers),
        "records": register_records_command(subparsers),
        "stock": register_stock_command(subparsers),
        "tanks": register_tanks_command(subparsers),
        "expenses": register_expenses_command(subparsers),
        "summary": register_summary_command(subparsers),
        "trend": register_trend_command(subparsers),
        "net-sales": register_net_sales_command(subparsers),
        "staff": register_staff_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_station_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--station", default=None, help="Station id (defaults to DefaultStation).")


def _add_date_argument(parser: argparse.ArgumentParser, *, required: bool = False) -> None:
    parser.add_argument("--date", type=parse_date, required=required, default=None, help="Business date (YYYY-MM-DD).")


# ---------------------------------------------------------------------------
# Write command registration
# ---------------------------------------------------------------------------


def register_add_station_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-station``."""
    name = "add-station"
    help_text = "Register a new station in the Stations sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--station-id", required=True)
        parser.add_argument("--station-name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_station)


def register_add_pump_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-pump``."""
    name = "add-pump"
    help_text = "Register a pump and the tank it draws from."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        parser.add_argument("--pump-id", required=True)
        parser.add_argument("--pump-number", type=int, required=True)
        parser.add_argument("--product", choices=[member.value for member in ProductType], required=True)
        parser.add_argument("--tank-id", required=True)
        parser.add_argument("--capacity", type=parse_decimal, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_pump)


def register_set_price_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-price``."""
    name = "set-price"
    help_text = "Record a new effective price per litre for a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product", choices=[member.value for member in ProductType], required=True)
        parser.add_argument("--price", type=parse_decimal, required=True)
        parser.add_argument("--effective-date", type=parse_date, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_price)


def register_reading_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reading``."""
    name = "reading"
    help_text = "Record a pump's opening and closing meter for a day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        parser.add_argument("--pump-id", required=True)
        _add_date_argument(parser)
        parser.add_argument("--opening", type=parse_decimal, required=True, help="Opening meter reading.")
        parser.add_argument("--closing", type=parse_decimal, required=True, help="Closing meter reading.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reading)


def register_seed_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``seed``."""
    name = "seed"
    help_text = "Create placeholder records for pumps without a record on the date."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        _add_date_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_seed)


def register_delete_record_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-record``."""
    name = "delete-record"
    help_text = "Delete a single daily fuel record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--record-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_record)


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Add delivered litres to a tank's opening stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        parser.add_argument("--tank-id", required=True)
        _add_date_argument(parser)
        parser.add_argument("--amount", required=True, help="Litres delivered.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock)


def register_reconcile_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reconcile``."""
    name = "reconcile"
    help_text = "Compare measured tank stock with the ledger on the first of a month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        parser.add_argument("--tank-id", required=True)
        _add_date_argument(parser)
        parser.add_argument("--real-stock", required=True, help="Physically measured litres.")
        parser.add_argument(
            "--confirm",
            action="store_true",
            help="Overwrite the opening stock with the measured value.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reconcile)


def register_set_capacity_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-capacity``."""
    name = "set-capacity"
    help_text = "Set the maximum capacity of a tank."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        parser.add_argument("--tank-id", required=True)
        parser.add_argument("--capacity", type=parse_decimal, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_capacity)


def register_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expense``."""
    name = "expense"
    help_text = "Log a station expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        _add_date_argument(parser)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", type=parse_decimal, required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in ExpenseCategory if member is not ExpenseCategory.FUEL_COLLECTION],
            default=None,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expense)


def register_fuel_collection_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``fuel-collection``."""
    name = "fuel-collection"
    help_text = "Log fuel handed over to a tanker driver."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        _add_date_argument(parser)
        parser.add_argument("--driver", required=True)
        parser.add_argument("--company", required=True)
        parser.add_argument("--product", choices=[member.value for member in ProductType], required=True)
        parser.add_argument("--litres", type=parse_decimal, required=True)
        parser.add_argument("--price", type=parse_decimal, default=None, help="Defaults to the catalog price.")
        parser.add_argument("--ticket", default="")
        parser.add_argument("--attendant", default="")
        parser.add_argument("--remarks", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_fuel_collection)


def register_delete_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-expense``."""
    name = "delete-expense"
    help_text = "Delete an expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--expense-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_expense)


def _add_staff_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required)
    parser.add_argument("--position", required=required)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--picture", default=None)
    parser.add_argument("--employed-on", type=parse_date, default=None)
    parser.add_argument("--birthday", type=parse_date, default=None)
    for network in staff.SOCIAL_MEDIA_NETWORKS:
        parser.add_argument(f"--{network}", default=None, help=f"{network.capitalize()} handle.")


def register_add_staff_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-staff``."""
    name = "add-staff"
    help_text = "Register a staff member."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        _add_staff_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_staff)


def register_update_staff_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-staff``."""
    name = "update-staff"
    help_text = "Edit a staff member."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--staff-id", required=True)
        _add_staff_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_staff)


# ---------------------------------------------------------------------------
# Read command registration
# ---------------------------------------------------------------------------


def _read_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    configure: Optional[Callable[[argparse.ArgumentParser], None]] = None,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_station_argument(parser)
        if configure is not None:
            configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, persists=False)


def register_pumps_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pumps``."""
    return _read_spec("pumps", "List a station's pumps.", run_pumps_report)


def register_records_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``records``."""
    return _read_spec("records", "List the fuel records of a day.", run_records_report, _add_date_argument)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--pump-id", required=True)
        _add_date_argument(parser)

    return _read_spec("stock", "Show the stock a pump starts the day with.", run_stock_report, configure)


def register_tanks_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``tanks``."""
    return _read_spec("tanks", "Show tank stock levels for a day.", run_tanks_report, _add_date_argument)


def register_expenses_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expenses``."""
    return _read_spec("expenses", "List the expenses of a day.", run_expenses_report, _add_date_argument)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    return _read_spec("summary", "Show sales, expenses, and net sales for a day.", run_summary_report, _add_date_argument)


def register_trend_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``trend``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--period", choices=["day", "month"], default="day")
        parser.add_argument("--year", type=int, required=True)
        parser.add_argument("--month", type=int, default=0)

    return _read_spec("trend", "Show sales volume per product over time.", run_trend_report, configure)


def register_net_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``net-sales``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--page", type=int, default=0)

    return _read_spec("net-sales", "Page through daily net sales.", run_net_sales_report, configure)


def register_staff_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``staff``."""
    return _read_spec("staff", "List a station's staff.", run_staff_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def resolve_station(context: core_logic.RuntimeContext, args: argparse.Namespace) -> str:
    """Return the station named on the command line or the configured default."""
    return getattr(args, "station", None) or context.settings.default_station_id


def resolve_date(args: argparse.Namespace) -> date:
    """Return the business date named on the command line or today."""
    return getattr(args, "date", None) or date.today()


def translate_reading(context: core_logic.RuntimeContext, args: argparse.Namespace) -> stock_ledger.MeterReadingCommand:
    """Translate CLI args into a meter reading command object."""
    return stock_ledger.MeterReadingCommand(
        station_id=resolve_station(context, args),
        pump_id=args.pump_id,
        record_date=resolve_date(args),
        meter_opening=args.opening,
        meter_closing=args.closing,
    )


def translate_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> stock_ledger.RestockCommand:
    """Translate CLI args into a restock command object.

    The amount stays raw text so the ledger reports non-numeric input itself.
    """
    return stock_ledger.RestockCommand(
        station_id=resolve_station(context, args),
        tank_id=args.tank_id,
        record_date=resolve_date(args),
        amount=args.amount,
    )


def translate_reconcile(context: core_logic.RuntimeContext, args: argparse.Namespace) -> stock_ledger.ReconcileCommand:
    """Translate CLI args into a reconciliation command object."""
    return stock_ledger.ReconcileCommand(
        station_id=resolve_station(context, args),
        tank_id=args.tank_id,
        record_date=resolve_date(args),
        real_stock=args.real_stock,
    )


def translate_social_media(args: argparse.Namespace) -> Dict[str, str]:
    """Collect the social media handles supplied on the command line."""
    return {
        network: getattr(args, network)
        for network in staff.SOCIAL_MEDIA_NETWORKS
        if getattr(args, network, None)
    }


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def run_add_station(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-station workflow."""
    core_logic.add_station(context, station_id=args.station_id, station_name=args.station_name)
    print(f"Added station {args.station_id}")
    return 0


def run_add_pump(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-pump workflow."""
    pump = core_logic.add_pump(
        context,
        station_id=resolve_station(context, args),
        pump_id=args.pump_id,
        pump_number=args.pump_number,
        product_type=args.product,
        tank_id=args.tank_id,
        capacity=args.capacity,
    )
    print(f"Added pump {pump.pump_id} ({pump.product_type}) on tank {pump.tank_id}")
    return 0


def run_set_price(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the set-price workflow."""
    price = core_logic.set_price(
        context,
        product_type=args.product,
        price_per_litre=args.price,
        effective_date=args.effective_date or date.today(),
    )
    print(f"{price.product_type} price {price.price_per_litre} effective {price.effective_date.isoformat()}")
    return 0


def run_reading(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the meter reading workflow via the stock ledger."""
    result = stock_ledger.record_meter_reading(context, translate_reading(context, args))
    record = result.record
    print(
        f"{record.record_id}: sales {record.sales_volume} L, total {record.total_sales}, "
        f"stock {record.opening_stock} -> {record.closing_stock}"
    )
    return 0


def run_seed(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily seeding workflow."""
    created = stock_ledger.seed_daily_records(context, resolve_station(context, args), resolve_date(args))
    print(f"Created {len(created)} placeholder record(s)")
    return 0


def run_delete_record(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the record deletion workflow."""
    stock_ledger.delete_fuel_record(context, args.record_id)
    print(f"Deleted {args.record_id}")
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restock workflow via the stock ledger."""
    result = stock_ledger.restock_tank(context, translate_restock(context, args))
    print(f"Tank {result.tank_id}: opening stock {result.previous_opening_stock} -> {result.new_opening_stock}")
    for failure in result.failures:
        print(f"  skipped: {failure}")
    return 0


def run_reconcile(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the reconciliation preview or confirmation workflow.

    A bare preview exits with code 0 but nothing is written.
    """
    command = translate_reconcile(context, args)
    if args.confirm:
        preview = stock_ledger.confirm_reconciliation(context, command).preview
    else:
        preview = stock_ledger.preview_reconciliation(
            context, command.station_id, command.tank_id, command.record_date, command.real_stock
        )
    print(
        f"Tank {preview.tank_id}: opening {preview.opening_stock}, real {preview.real_stock}, "
        f"excess {preview.excess:+}" + ("" if args.confirm else " (preview only)")
    )
    return 0


def run_set_capacity(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the tank capacity workflow."""
    stock_ledger.set_tank_capacity(context, resolve_station(context, args), args.tank_id, args.capacity)
    print(f"Tank {args.tank_id} capacity set to {args.capacity}")
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expense logging workflow."""
    expense = expenses.record_expense(
        context,
        station_id=resolve_station(context, args),
        expense_date=resolve_date(args),
        description=args.description,
        amount=args.amount,
        category=args.category,
    )
    print(f"Recorded expense {expense.expense_id}: {expense.amount}")
    return 0


def run_fuel_collection(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the fuel collection workflow."""
    expense = expenses.record_fuel_collection(
        context,
        station_id=resolve_station(context, args),
        expense_date=resolve_date(args),
        drivers_name=args.driver,
        company=args.company,
        product=args.product,
        litres=args.litres,
        price_per_litre=args.price,
        ticket_number=args.ticket,
        attendant_name=args.attendant,
        remarks=args.remarks,
    )
    print(f"Recorded fuel collection {expense.expense_id}: {expense.amount}")
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expense deletion workflow."""
    expenses.delete_expense(context, args.expense_id)
    print(f"Deleted {args.expense_id}")
    return 0


def run_add_staff(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-staff workflow."""
    member = staff.add_staff(
        context,
        station_id=resolve_station(context, args),
        name=args.name,
        position=args.position,
        phone=args.phone,
        social_media=translate_social_media(args),
        picture=args.picture,
        date_of_employment=args.employed_on,
        birthday=args.birthday,
    )
    print(f"Added staff member {member.staff_id}: {member.name}")
    return 0


def run_update_staff(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-staff workflow with only the options supplied."""
    changes = {
        attribute: value
        for attribute, value in (
            ("name", args.name),
            ("position", args.position),
            ("phone", args.phone),
            ("picture", args.picture),
            ("date_of_employment", args.employed_on),
            ("birthday", args.birthday),
        )
        if value is not None
    }
    handles = translate_social_media(args)
    if handles:
        changes["social_media"] = {**staff.social_media_handles(staff.get_staff(context, args.staff_id)), **handles}
    member = staff.update_staff(context, args.staff_id, **changes)
    print(f"Updated staff member {member.staff_id}")
    return 0


def run_pumps_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a station's pumps."""
    for pump in core_logic.list_pumps(context, resolve_station(context, args)):
        capacity = pump.capacity if pump.capacity is not None else context.settings.default_tank_capacity
        print(f"#{pump.pump_number} {pump.pump_id} {pump.product_type} tank={pump.tank_id} capacity={capacity}")
    return 0


def run_records_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the fuel records of a day."""
    for record in stock_ledger.list_fuel_records(context, resolve_station(context, args), resolve_date(args)):
        print(
            f"{record.pump_id} [{record.input_mode}] meters {record.meter_opening}-{record.meter_closing} "
            f"sales {record.sales_volume} total {record.total_sales} "
            f"stock {record.opening_stock} -> {record.closing_stock}"
        )
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the stock position a pump starts the day with."""
    snapshot = stock_ledger.resolve_previous_day_stock(
        context, resolve_station(context, args), args.pump_id, resolve_date(args)
    )
    print(
        f"opening {snapshot.opening_stock} sales {snapshot.sales_volume} closing {snapshot.closing_stock} "
        f"meters {snapshot.opening_meter}-{snapshot.closing_meter} (from {snapshot.source})"
    )
    return 0


def run_tanks_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print tank stock levels for a day."""
    for level in reports.tank_levels(context, resolve_station(context, args), resolve_date(args)):
        print(
            f"{level.tank_id} {level.product_type}: {level.closing_stock} / {level.max_capacity} L "
            f"({level.fill_percentage}%)" + (" [pump stocks differ]" if level.diverged else "")
        )
    return 0


def run_expenses_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the expenses of a day."""
    station_id = resolve_station(context, args)
    expense_date = resolve_date(args)
    for expense in expenses.list_expenses(context, station_id, expense_date):
        collection = expenses.parse_fuel_collection(expense)
        if collection is not None:
            detail = f"{collection.drivers_name} ({collection.company}) {collection.litres} L {collection.product}"
        else:
            detail = expense.description
        print(f"{expense.expense_id} {expense.category or 'Uncategorized'}: {detail} {expense.amount}")
    print(f"Total: {expenses.total_expenses(context, station_id, expense_date)}")
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the daily sales summary."""
    summary = reports.daily_summary(context, resolve_station(context, args), resolve_date(args))
    for product in summary.products:
        print(
            f"{product.product_type}: {product.total_volume} L at {product.price_per_litre} = {product.total_sales}"
        )
    print(f"Total sales: {summary.total_sales}")
    print(f"Total expenses: {summary.total_expenses}")
    print(f"Net sales: {summary.net_sales}")
    return 0


def run_trend_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print sales volume per product over time."""
    points = reports.sales_trend(
        context, resolve_station(context, args), year=args.year, month=args.month, period=args.period
    )
    for point in points:
        volumes = " ".join(f"{product}={volume}" for product, volume in point.volumes.items())
        print(f"{point.label}: {volumes}")
    return 0


def run_net_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one page of daily net sales."""
    page = reports.net_sales_history(context, resolve_station(context, args), args.page)
    for entry in page.entries:
        print(
            f"{entry.record_date.isoformat()}: sales {entry.total_sales} "
            f"expenses {entry.total_expenses} net {entry.net_sales}"
        )
    if page.has_more:
        print(f"More records on page {page.page + 1}")
    return 0


def run_staff_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print a station's staff."""
    for member in staff.list_staff(context, resolve_station(context, args)):
        employed = member.date_of_employment.isoformat() if member.date_of_employment else "-"
        print(f"{member.staff_id} {member.name} ({member.position}) employed {employed}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, StoreFailure):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].persists:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
