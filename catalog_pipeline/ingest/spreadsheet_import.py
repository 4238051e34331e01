"""Manufacturer price-list / product-sheet import.

CSV and XLSX sheets are mapped column-by-column onto product fields and fed
through the same idempotent upsert as scraped products. A preview call
returns suggested mappings and new-vs-update estimates without writing.
"""

import csv
import io
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import openpyxl

from catalog_pipeline.db.models import Manufacturer
from catalog_pipeline.db.store import CatalogStore
from catalog_pipeline.errors import SpreadsheetError
from catalog_pipeline.ingest.base import StructuredProduct
from catalog_pipeline.ingest.catalog_upsert import (
    CatalogUpserter,
    UpsertContext,
    UpsertReport,
    derive_product_code,
)

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = {"product_name", "product_code", "description", "pillar"}

# Mapped onto specifications; the catalog has no dedicated commercial columns
COMMERCIAL_FIELDS = {
    "list_price",
    "trade_price",
    "sell_price",
    "unit",
    "lead_time_days",
    "certifications",
}
NUMERIC_FIELDS = {"list_price", "trade_price", "sell_price", "lead_time_days"}

COLUMN_ALIASES = {
    "product name": "product_name",
    "name": "product_name",
    "product": "product_name",
    "title": "product_name",
    "product code": "product_code",
    "code": "product_code",
    "sku": "product_code",
    "ref": "product_code",
    "reference": "product_code",
    "description": "description",
    "desc": "description",
    "details": "description",
    "pillar": "pillar",
    "category": "pillar",
    "type": "pillar",
    "list price": "list_price",
    "price": "list_price",
    "rrp": "list_price",
    "trade price": "trade_price",
    "trade": "trade_price",
    "sell price": "sell_price",
    "selling price": "sell_price",
    "net price": "sell_price",
    "unit": "unit",
    "uom": "unit",
    "lead time": "lead_time_days",
    "lead time days": "lead_time_days",
    "certifications": "certifications",
    "certs": "certifications",
    "standards": "certifications",
}

PREVIEW_SAMPLE_ROWS = 5
PREVIEW_CODE_SAMPLE = 20

_CURRENCY_RE = re.compile(r"[£$€,]")


@dataclass
class Sheet:
    """Header row plus non-empty data rows, all as strings."""

    columns: List[str]
    rows: List[List[str]] = field(default_factory=list)

    def cell(self, row: List[str], column: str) -> str:
        try:
            index = self.columns.index(column)
        except ValueError:
            return ""
        return row[index].strip() if index < len(row) and row[index] else ""


def read_csv(data: bytes) -> Sheet:
    text = data.decode("utf-8-sig", errors="replace")
    rows = [
        [cell.strip() for cell in row]
        for row in csv.reader(io.StringIO(text))
        if any(cell.strip() for cell in row)
    ]
    if len(rows) < 2:
        raise SpreadsheetError("CSV has no data rows")
    return Sheet(columns=rows[0], rows=rows[1:])


def read_xlsx(data: bytes) -> Sheet:
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as e:
        raise SpreadsheetError(f"Unreadable spreadsheet: {e}") from e

    try:
        sheet = workbook.worksheets[0] if workbook.worksheets else None
        values = list(sheet.iter_rows(values_only=True)) if sheet is not None else []
    finally:
        workbook.close()

    if len(values) < 2:
        raise SpreadsheetError("Spreadsheet has no data rows")

    columns = [
        str(value) if value not in (None, "") else f"Column {index + 1}"
        for index, value in enumerate(values[0])
    ]
    rows = []
    for raw in values[1:]:
        cells = ["" if value is None else str(value) for value in raw]
        if any(cell.strip() for cell in cells):
            rows.append(cells)
    return Sheet(columns=columns, rows=rows)


def read_sheet(data: bytes, filename: str) -> Sheet:
    """
    Parse an uploaded sheet by file extension.

    Raises:
        SpreadsheetError: Unsupported extension, unreadable file, or no data rows
    """
    name = filename.lower()
    if name.endswith(".csv"):
        return read_csv(data)
    if name.endswith(".xlsx"):
        return read_xlsx(data)
    raise SpreadsheetError("Unsupported file type. Use .csv or .xlsx")


def suggest_mapping(column: str) -> str:
    """
    Suggest a target field for a column header.

    Exact aliases win, then partial matches; anything else becomes a
    ``spec:<column>`` specification field.
    """
    col = column.lower().strip()
    if col in COLUMN_ALIASES:
        return COLUMN_ALIASES[col]
    if col:
        for alias, target in COLUMN_ALIASES.items():
            if alias in col or col in alias:
                return target
    return f"spec:{column.strip()}"


def parse_number(value: str) -> Optional[float]:
    try:
        number = float(_CURRENCY_RE.sub("", value))
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


def row_to_candidate(
    sheet: Sheet, row: List[str], mapping: Dict[str, str]
) -> Tuple[Optional[StructuredProduct], Optional[str]]:
    """
    Build a candidate from one row.

    Returns:
        (candidate, None) or (None, error message)
    """
    direct: Dict[str, str] = {}
    specifications: Dict[str, Any] = {}

    for column, target in mapping.items():
        if not target or target == "skip":
            continue
        value = sheet.cell(row, column)
        if not value:
            continue
        if target.startswith("spec:"):
            specifications[target[5:]] = value
        elif target in PRODUCT_FIELDS:
            direct[target] = value
        elif target in NUMERIC_FIELDS:
            number = parse_number(value)
            if number is not None:
                specifications[target] = number
        elif target in COMMERCIAL_FIELDS:
            specifications[target] = value

    if not direct.get("product_name"):
        return None, "Missing product name"

    return (
        StructuredProduct(
            product_name=direct["product_name"],
            product_code=direct.get("product_code"),
            description=direct.get("description"),
            pillar=direct.get("pillar"),
            specifications=specifications,
        ),
        None,
    )


class SpreadsheetImporter:
    """Preview and import product sheets for one manufacturer."""

    def __init__(self, store: CatalogStore, upserter: Optional[CatalogUpserter] = None):
        self.store = store
        self.upserter = upserter or CatalogUpserter(store)

    async def preview(self, manufacturer: Manufacturer, sheet: Sheet) -> Dict[str, Any]:
        """Suggested mapping, sample rows and new-vs-update estimate."""
        suggested = {column: suggest_mapping(column) for column in sheet.columns}

        codes = []
        for row in sheet.rows[:PREVIEW_CODE_SAMPLE]:
            candidate, _ = row_to_candidate(sheet, row, suggested)
            if candidate is not None:
                codes.append(derive_product_code(candidate))

        existing = await self.store.count_products_with_codes(manufacturer.id, codes)
        return {
            "preview": True,
            "columns": sheet.columns,
            "suggested_mapping": suggested,
            "total_rows": len(sheet.rows),
            "sample_rows": sheet.rows[:PREVIEW_SAMPLE_ROWS],
            "estimated_new": len(sheet.rows) - existing,
            "estimated_update": existing,
        }

    async def import_rows(
        self,
        manufacturer: Manufacturer,
        sheet: Sheet,
        mapping: Dict[str, str],
        filename: str,
    ) -> UpsertReport:
        """
        Upsert every row through the catalog upsert.

        Rows without a product name are reported as ``Row N`` failures, where N
        is the 1-based line in the sheet including the header.

        Raises:
            SpreadsheetError: The mapping has no product_name column
        """
        if "product_name" not in mapping.values():
            raise SpreadsheetError("Mapping must include product_name")

        context = replace(
            UpsertContext.for_manufacturer(manufacturer),
            source_info={
                "source": "csv_import",
                "filename": filename,
                "imported_at": datetime.utcnow().isoformat(),
            },
        )

        candidates = []
        row_errors: List[Tuple[int, str]] = []
        for index, row in enumerate(sheet.rows):
            candidate, error = row_to_candidate(sheet, row, mapping)
            if candidate is None:
                row_errors.append((index + 2, error))
            else:
                candidates.append(candidate)

        report = await self.upserter.upsert(candidates, context)
        for line, error in row_errors:
            report.add(f"Row {line}", "failed", error)

        logger.info(
            f"Imported {filename} for manufacturer {manufacturer.id}: {report.created} created, "
            f"{report.updated} updated, {len(report.failures)} errors"
        )
        return report
