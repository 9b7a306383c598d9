"""Read-only sales reporting over the stock ledger and expenses."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Dict, List, Tuple

from . import core_logic, expenses, log, stock_ledger
from .constants import NET_SALES_PAGE_SIZE, ProductType
from .core_logic import RuntimeContext

ZERO = Decimal("0")


@dataclass(frozen=True)
class ProductSales:
    product_type: str
    total_sales: Decimal
    total_volume: Decimal
    price_per_litre: Decimal


@dataclass(frozen=True)
class DailySummary:
    station_id: str
    summary_date: date
    products: Tuple[ProductSales, ...]
    total_sales: Decimal
    total_expenses: Decimal
    net_sales: Decimal


@dataclass(frozen=True)
class TrendPoint:
    period: str
    label: str
    volumes: Dict[str, Decimal]


@dataclass(frozen=True)
class NetSalesEntry:
    record_date: date
    total_sales: Decimal
    total_expenses: Decimal
    net_sales: Decimal


@dataclass(frozen=True)
class NetSalesPage:
    page: int
    entries: Tuple[NetSalesEntry, ...]
    has_more: bool


@dataclass(frozen=True)
class TankLevel:
    tank_id: str
    product_type: str
    closing_stock: Decimal
    max_capacity: Decimal
    fill_percentage: Decimal
    diverged: bool = False


def daily_summary(context: RuntimeContext, station_id: str, summary_date: date) -> DailySummary:
    """Summarise a station's sales per product and its net position for a day.

    Each product carries its summed sales value and volume plus the price of
    the last priced record read for it. Unpriced placeholder rows never
    override a real price.
    """
    core_logic.get_station(context, station_id)
    per_product: Dict[str, ProductSales] = {}
    for record in stock_ledger.list_fuel_records(context, station_id, summary_date):
        current = per_product.get(record.product_type)
        if current is None:
            per_product[record.product_type] = ProductSales(
                product_type=record.product_type,
                total_sales=record.total_sales,
                total_volume=record.sales_volume,
                price_per_litre=record.price_per_litre,
            )
        else:
            price = record.price_per_litre if record.price_per_litre > ZERO else current.price_per_litre
            per_product[record.product_type] = ProductSales(
                product_type=record.product_type,
                total_sales=current.total_sales + record.total_sales,
                total_volume=current.total_volume + record.sales_volume,
                price_per_litre=price,
            )

    products = tuple(
        replace(per_product[key], total_sales=core_logic.quantize_money(per_product[key].total_sales))
        for key in sorted(per_product)
    )
    total_sales = core_logic.quantize_money(sum((item.total_sales for item in products), ZERO))
    total_expenses = expenses.total_expenses(context, station_id, summary_date)
    return DailySummary(
        station_id=station_id,
        summary_date=summary_date,
        products=products,
        total_sales=total_sales,
        total_expenses=total_expenses,
        net_sales=total_sales - total_expenses,
    )


def _empty_volumes() -> Dict[str, Decimal]:
    return {product.value: ZERO for product in ProductType}


def sales_trend(context: RuntimeContext, station_id: str, *, year: int, month: int = 0, period: str = "day") -> List[TrendPoint]:
    """Return sales volume per product over time.

    With ``period="day"`` there is one point per day of ``month``; with
    ``period="month"`` one point per month of ``year``. Periods without sales
    are present with zero volumes.

    Raises:
        ValueError: If ``period`` is unknown or a daily trend lacks a month.
    """
    if period == "day":
        if not 1 <= month <= 12:
            raise ValueError("A daily trend needs a month between 1 and 12")
        days = calendar.monthrange(year, month)[1]
        points = {
            date(year, month, day).isoformat(): TrendPoint(
                period=date(year, month, day).isoformat(),
                label=date(year, month, day).strftime("%b %d"),
                volumes=_empty_volumes(),
            )
            for day in range(1, days + 1)
        }
        key_format = "%Y-%m-%d"
    elif period == "month":
        points = {
            f"{year:04d}-{number:02d}": TrendPoint(
                period=f"{year:04d}-{number:02d}",
                label=calendar.month_abbr[number],
                volumes=_empty_volumes(),
            )
            for number in range(1, 13)
        }
        key_format = "%Y-%m"
    else:
        raise ValueError(f"Unknown trend period: {period}")

    for record in core_logic.list_station_records(context, station_id):
        point = points.get(record.record_date.strftime(key_format))
        if point is None:
            continue
        point.volumes[record.product_type] = point.volumes.get(record.product_type, ZERO) + record.sales_volume

    log.debug("Built %s trend for station '%s' with %d points", period, station_id, len(points))
    return [points[key] for key in sorted(points)]


def net_sales_history(context: RuntimeContext, station_id: str, page: int = 0) -> NetSalesPage:
    """Page through daily net sales, newest record date first.

    A page covers ``NET_SALES_PAGE_SIZE`` distinct record dates.

    Raises:
        ValueError: If ``page`` is negative.
    """
    if page < 0:
        raise ValueError("Page number cannot be negative")
    records = core_logic.list_station_records(context, station_id)
    all_dates = sorted({record.record_date for record in records}, reverse=True)
    start = page * NET_SALES_PAGE_SIZE
    end = start + NET_SALES_PAGE_SIZE
    page_dates = all_dates[start:end]

    sales_by_date: Dict[date, Decimal] = {}
    for record in records:
        if record.record_date in page_dates:
            sales_by_date[record.record_date] = sales_by_date.get(record.record_date, ZERO) + record.total_sales

    entries = []
    for record_date in page_dates:
        total_sales = core_logic.quantize_money(sales_by_date.get(record_date, ZERO))
        total_expenses = expenses.total_expenses(context, station_id, record_date)
        entries.append(
            NetSalesEntry(
                record_date=record_date,
                total_sales=total_sales,
                total_expenses=total_expenses,
                net_sales=total_sales - total_expenses,
            )
        )
    return NetSalesPage(page=page, entries=tuple(entries), has_more=end < len(all_dates))


def tank_levels(context: RuntimeContext, station_id: str, as_of: date) -> List[TankLevel]:
    """Return each tank's closing stock on ``as_of`` against its capacity."""
    return [
        TankLevel(
            tank_id=group.tank_id,
            product_type=group.product_type,
            closing_stock=group.closing_stock,
            max_capacity=group.max_capacity,
            fill_percentage=group.fill_percentage,
            diverged=group.diverged,
        )
        for group in stock_ledger.list_tank_groups(context, station_id, as_of)
    ]
