"""Enumerations shared across Station Ledger modules.

Centralises domain constants so that the data access layer (DAL), the stock
ledger, the reporting helpers, and the CLI rely on a single source of truth for
identifiers, sheet layouts, and numeric policies.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Monetary totals are quantized to kobo; volumes and stock levels stay exact.
MONEY_QUANTUM = Decimal("0.01")

# Tank size assumed when a pump carries no explicit capacity.
DEFAULT_TANK_CAPACITY = Decimal("33000")

# Number of distinct record dates returned per net-sales history page.
NET_SALES_PAGE_SIZE = 10


class InputMode(str, Enum):
    """Provenance tag distinguishing operator rows from derived rows."""

    MANUAL = "manual"
    AUTO = "auto"
    RESTOCK = "restock"


class ProductType(str, Enum):
    """Enumerate the fuel products sold on the forecourt."""

    PMS = "PMS"
    AGO = "AGO"
    LPG = "LPG"


class ExpenseCategory(str, Enum):
    """Enumerate the expense categories offered to operators."""

    FUEL_COLLECTION = "Fuel Collection"
    MAINTENANCE = "Maintenance"
    UTILITIES = "Utilities"
    STAFF_WAGES = "Staff Wages"
    FUEL_PURCHASE = "Fuel Purchase"
    OFFICE_SUPPLIES = "Office Supplies"
    INSURANCE = "Insurance"
    TRANSPORTATION = "Transportation"
    SECURITY = "Security"
    OTHER = "Other"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    STATIONS = "Stations"
    PUMPS = "Pumps"
    PRODUCT_PRICES = "ProductPrices"
    FUEL_RECORDS = "FuelRecords"
    MONTHLY_STOCK = "MonthlyStock"
    EXPENSES = "Expenses"
    STAFF = "Staff"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "MONEY_QUANTUM",
    "DEFAULT_TANK_CAPACITY",
    "NET_SALES_PAGE_SIZE",
    "InputMode",
    "ProductType",
    "ExpenseCategory",
    "SheetName",
]
