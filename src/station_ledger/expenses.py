"""Expense logging for a station, including fuel collection tickets."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from . import core_logic, data_manager, log
from .constants import ExpenseCategory
from .core_logic import RuntimeContext
from .errors import BusinessRuleViolation, MissingReferenceError


@dataclass(frozen=True)
class FuelCollection:
    """Details of fuel handed over to a tanker driver, stored as JSON."""

    drivers_name: str
    company: str
    product: str
    litres: Decimal
    price_per_litre: Decimal
    ticket_number: str = ""
    attendant_name: str = ""
    remarks: str = ""


def _resolve_category(category: Optional[str]) -> Optional[str]:
    if category is None or not category.strip():
        return None
    try:
        return ExpenseCategory(category.strip()).value
    except ValueError as exc:
        log.error("Unsupported expense category provided: %s", category)
        raise BusinessRuleViolation(f"Unsupported expense category: {category}") from exc


def _store_expense(context: RuntimeContext, expense: data_manager.ExpenseRow) -> data_manager.ExpenseRow:
    with core_logic._record_store("append expense"):
        data_manager.append_expense(context.workbook, expense)
    core_logic._invalidate_cache(context, "expenses")
    log.info(
        "Recorded %s expense '%s' of %s for %s",
        expense.category or "uncategorized",
        expense.expense_id,
        expense.amount,
        expense.expense_date.isoformat(),
    )
    return expense


def record_expense(
    context: RuntimeContext,
    *,
    station_id: str,
    expense_date: date,
    description: str,
    amount: Decimal,
    category: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.ExpenseRow:
    """Log a general expense against a station.

    Raises:
        MissingReferenceError: If the station is unknown.
        BusinessRuleViolation: If the description is blank or the category is
            not one of :class:`ExpenseCategory`.
        ValueError: If ``amount`` is negative.
    """
    core_logic.get_station(context, station_id)
    if not description or not description.strip():
        raise BusinessRuleViolation("Expense description cannot be empty")
    core_logic.require_nonnegative_money(amount)
    when = core_logic._resolve_timestamp(timestamp)
    expense = data_manager.ExpenseRow(
        expense_id=core_logic.generate_id("EXP", when=when),
        station_id=station_id,
        expense_date=expense_date,
        category=_resolve_category(category),
        description=description.strip(),
        amount=core_logic.quantize_money(amount),
        created_at=when.isoformat(),
    )
    return _store_expense(context, expense)


def record_fuel_collection(
    context: RuntimeContext,
    *,
    station_id: str,
    expense_date: date,
    drivers_name: str,
    company: str,
    product: str,
    litres: Decimal,
    price_per_litre: Optional[Decimal] = None,
    ticket_number: str = "",
    attendant_name: str = "",
    remarks: str = "",
    timestamp: Optional[datetime] = None,
) -> data_manager.ExpenseRow:
    """Log fuel collected by a tanker as a ``Fuel Collection`` expense.

    The amount is ``litres * price_per_litre``; the price defaults to the
    catalog price of ``product`` effective on ``expense_date``.

    Raises:
        BusinessRuleViolation: If the product is unsupported or no price is
            available.
        ValueError: If ``litres`` is not positive or the price is negative.
    """
    core_logic.get_station(context, station_id)
    product_type = core_logic.require_product_type(product)
    core_logic.require_positive_quantity(litres)
    if price_per_litre is None:
        price_per_litre = core_logic.get_latest_price(context, product_type.value, expense_date)
        if price_per_litre is None:
            log.error("No %s price available for fuel collection on %s", product_type.value, expense_date)
            raise BusinessRuleViolation(
                f"No {product_type.value} price effective on {expense_date.isoformat()}; pass a price explicitly"
            )
    core_logic.require_nonnegative_money(price_per_litre)

    details = FuelCollection(
        drivers_name=drivers_name,
        company=company,
        product=product_type.value,
        litres=litres,
        price_per_litre=price_per_litre,
        ticket_number=ticket_number,
        attendant_name=attendant_name,
        remarks=remarks,
    )
    when = core_logic._resolve_timestamp(timestamp)
    expense = data_manager.ExpenseRow(
        expense_id=core_logic.generate_id("EXP", when=when),
        station_id=station_id,
        expense_date=expense_date,
        category=ExpenseCategory.FUEL_COLLECTION.value,
        description=json.dumps(asdict(details), default=str),
        amount=core_logic.quantize_money(litres * price_per_litre),
        created_at=when.isoformat(),
    )
    return _store_expense(context, expense)


def parse_fuel_collection(expense: data_manager.ExpenseRow) -> Optional[FuelCollection]:
    """Decode the details of a fuel collection expense.

    Returns ``None`` for other categories or descriptions that are not valid
    collection JSON.
    """
    if expense.category != ExpenseCategory.FUEL_COLLECTION.value:
        return None
    try:
        payload = json.loads(expense.description)
        return FuelCollection(
            drivers_name=payload["drivers_name"],
            company=payload["company"],
            product=payload["product"],
            litres=Decimal(str(payload["litres"])),
            price_per_litre=Decimal(str(payload["price_per_litre"])),
            ticket_number=payload.get("ticket_number", ""),
            attendant_name=payload.get("attendant_name", ""),
            remarks=payload.get("remarks", ""),
        )
    except (ValueError, KeyError, TypeError, ArithmeticError):
        log.warning("Expense '%s' carries unreadable collection details", expense.expense_id)
        return None


def _all_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    bucket = core_logic._get_cache_bucket(context, "expenses")
    if "all" not in bucket:
        with core_logic._record_store("load expenses"):
            bucket["all"] = list(data_manager.iter_expenses(context.workbook))
    return bucket["all"]


def list_expenses(context: RuntimeContext, station_id: str, expense_date: date) -> List[data_manager.ExpenseRow]:
    """Return a station's expenses for a date, newest first."""
    matches = [
        expense
        for expense in _all_expenses(context)
        if expense.station_id == station_id and expense.expense_date == expense_date
    ]
    return sorted(matches, key=lambda row: row.created_at, reverse=True)


def total_expenses(context: RuntimeContext, station_id: str, expense_date: date) -> Decimal:
    """Sum a station's expenses for a date."""
    total = sum((expense.amount for expense in list_expenses(context, station_id, expense_date)), Decimal("0"))
    return core_logic.quantize_money(total)


def delete_expense(context: RuntimeContext, expense_id: str) -> None:
    """Remove an expense by identifier.

    Raises:
        MissingReferenceError: If no expense carries ``expense_id``.
    """
    with core_logic._record_store("delete expense"):
        removed = data_manager.delete_row(context.workbook, data_manager.EXPENSES_SHEET, "ExpenseID", expense_id)
    if not removed:
        log.warning("Expense lookup failed for id '%s'", expense_id)
        raise MissingReferenceError(f"Unknown expense id: {expense_id}")
    core_logic._invalidate_cache(context, "expenses")
    log.info("Deleted expense '%s'", expense_id)
