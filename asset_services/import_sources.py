"""
Spreadsheet sources for bulk asset import.

Reads a .csv or .xlsx export into ``AssetImportRow`` objects for
``AssetWorkflowService.import_assets``.  Only parsing happens here; every
business rule (duplicates, kinds, initial statuses) stays in AssetRegistry,
so a malformed cell becomes a row error there rather than an exception here.

Recognised columns (header match is case- and spacing-insensitive):
    Serial Number, Type / Kind, Model, Manufacturer, Status, Customer

Rows whose cells are all empty are skipped.  A blank Status takes the kind's
default status; a missing Type column takes ``default_kind``.
"""

from __future__ import annotations

import csv
import re
from pathlib import Path
from typing import Any, Iterator

from asset_kernel.domain.dtos import AssetImportRow
from asset_kernel.domain.values import AssetKind
from asset_kernel.logging_config import get_logger
from asset_kernel.services.asset_registry import DEFAULT_STATUS

logger = get_logger("services.import_sources")

_COLUMN_ALIASES = {
    "serial number": "serial_number",
    "serial": "serial_number",
    "serial no": "serial_number",
    "serialnumber": "serial_number",
    "type": "kind",
    "kind": "kind",
    "model": "model",
    "manufacturer": "manufacturer",
    "status": "status",
    "customer": "customer_ref",
    "customer ref": "customer_ref",
}


def _normalize_header(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"[\s_]+", " ", str(value)).strip().lower()


def _cell_text(value: Any) -> str:
    """Cell as text; whole floats lose their ``.0`` so numeric serials survive."""
    if value is None:
        return ""
    if isinstance(value, float) and value == int(value):
        return str(int(value))
    return str(value).strip()


def _read_csv(path: Path, encoding: str) -> Iterator[list[Any]]:
    # utf-8-sig strips the BOM spreadsheet tools put in front of exports
    if encoding.lower() == "utf-8":
        encoding = "utf-8-sig"
    with path.open("r", encoding=encoding, newline="") as f:
        yield from csv.reader(f)


def _read_xlsx(path: Path, sheet: int | str | None) -> Iterator[list[Any]]:
    try:
        import openpyxl
    except ImportError as e:
        raise ImportError("XLSX support requires openpyxl. Install with: pip install openpyxl") from e

    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        if sheet is None:
            ws = wb.active
        elif isinstance(sheet, int):
            ws = wb.worksheets[sheet]
        else:
            ws = wb[sheet]
        for row in ws.iter_rows(values_only=True):
            yield list(row)
    finally:
        wb.close()


def read_import_rows(
    path: Path | str,
    *,
    default_kind: AssetKind = AssetKind.MACHINE,
    sheet: int | str | None = None,
    encoding: str = "utf-8",
) -> list[AssetImportRow]:
    """
    Parse a spreadsheet export into import rows.

    Raises:
        ValueError: unsupported file type, or no Serial Number column.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        raw = _read_csv(path, encoding)
    elif suffix == ".xlsx":
        raw = _read_xlsx(path, sheet)
    else:
        raise ValueError(f"Unsupported import file type: {path.suffix or path.name}")

    header = next(raw, None)
    if header is None:
        return []
    columns = [_COLUMN_ALIASES.get(_normalize_header(cell)) for cell in header]
    if "serial_number" not in columns:
        raise ValueError(f"{path.name}: no Serial Number column")

    rows: list[AssetImportRow] = []
    for values in raw:
        cells = [_cell_text(v) for v in values]
        if not any(cells):
            continue
        record = {key: cell for key, cell in zip(columns, cells) if key is not None}
        kind_text = record.get("kind", "")
        try:
            kind = AssetKind(kind_text.upper()) if kind_text else default_kind
        except ValueError:
            # Unknown kind; AssetRegistry reports it against the row
            kind = default_kind
        rows.append(
            AssetImportRow(
                serial_number=record.get("serial_number", ""),
                kind=kind_text or default_kind,
                model=record.get("model") or None,
                manufacturer=record.get("manufacturer") or None,
                status=record.get("status") or DEFAULT_STATUS[kind],
                customer_ref=record.get("customer_ref") or None,
            )
        )

    logger.info(
        "import_rows_read",
        extra={"file_name": path.name, "row_count": len(rows)},
    )
    return rows
