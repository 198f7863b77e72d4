from __future__ import annotations

import csv
import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Mapping

from openpyxl import Workbook, load_workbook
from openpyxl.utils.datetime import from_excel

from margintrack.config import BusinessConfig
from margintrack.domain.errors import ValidationError, user_message
from margintrack.domain.models import EDITABLE_FIELDS, NUMERIC_FIELDS, TEXT_FIELDS, ImportSummary
from margintrack.repositories.contracts import StyleStore
from margintrack.services.retry import RetryExecutor
from margintrack.services.validation import coerce_values, is_blank, validate_record

log = logging.getLogger(__name__)

# optional sign, then a currency code and/or symbol ("R ", "ZAR", "US$", "$")
_MONEY_PREFIX = re.compile(r"^(-?)\s*(?:[A-Z]{1,3})?\s*[$€£¥]?\s*")
_PLAIN_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")

# normalized spreadsheet header -> style field
COLUMN_MAP = {
    "style #": "style_code",
    "style": "style_code",
    "styleid": "style_code",
    "style id": "style_code",
    "factory": "factory",
    "cust del": "delivery_date",
    "delivery date": "delivery_date",
    "deliverydate": "delivery_date",
    "description": "description",
    "fabric/trim": "fabric_trim",
    "fabric/ trim": "fabric_trim",
    "fabric / trim": "fabric_trim",
    "fabric": "fabric_trim",
    "trim": "fabric_trim",
    "fabrictrim": "fabric_trim",
    "type": "style_type",
    "units": "units",
    "qty": "units",
    "quantity": "units",
    "pack": "pack",
    "price": "price",
    "price (usd)": "price",
    "cost": "price",
    "rate": "rate",
    "exchange rate": "rate",
    "extra cost": "extra_cost",
    "extra cost (zar)": "extra_cost",
    "extracost": "extra_cost",
    "extra": "extra_cost",
    "actual selling price": "selling_price",
    "selling price": "selling_price",
    "selling price (zar)": "selling_price",
    "sellingprice": "selling_price",
    "selling": "selling_price",
}

TEMPLATE_HEADERS = [
    "Style #", "Factory", "Cust Del", "Description", "Fabric/Trim", "Type",
    "Units", "Pack", "Price", "Rate", "Extra Cost", "Selling Price",
]
TEMPLATE_EXAMPLE = ["TP131", "Factory A", "2025-03-01", "Knit top", "Cotton", "Top", 1500, 2, 13.95, 42, 23, 129.5]


def normalize_header(header: str) -> str:
    return re.sub(r"\s+", " ", header.lower()).strip()


def parse_number(value: Any) -> Any:
    """Strip currency formatting ("R 1,200.50" -> 1200.5). Blank -> None.

    Anything else that is not a plain number ("n/a", "1e3", "abc5") is
    returned as-is so validation reports it.
    """
    if is_blank(value):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    prefix = _MONEY_PREFIX.match(text)
    rest = text[prefix.end():].replace(",", "").replace(" ", "")
    if not _PLAIN_NUMBER.fullmatch(rest) or (prefix.group(1) and rest.startswith("-")):
        return str(value)
    return float(prefix.group(1) + rest)


def parse_date(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        # serial day number from an unformatted spreadsheet cell
        return from_excel(value).date().isoformat()
    return str(value).strip()


def map_row(row: Mapping[str, Any]) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for header, value in row.items():
        if not isinstance(header, str):
            continue
        key = COLUMN_MAP.get(normalize_header(header))
        if key is None or key in mapped:
            continue
        if key in NUMERIC_FIELDS:
            mapped[key] = parse_number(value)
        elif key == "delivery_date":
            mapped[key] = parse_date(value)
        else:
            mapped[key] = "" if value is None else str(value).strip()
    return mapped


def _read_xlsx(path: Path) -> list[dict[str, Any]]:
    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        ws = wb.active
        rows = ws.iter_rows(values_only=True)
        headers = next(rows, None)
        if headers is None:
            return []
        out = []
        for values in rows:
            out.append({h: v for h, v in zip(headers, values) if isinstance(h, str)})
        return out
    finally:
        wb.close()


def _read_csv(path: Path) -> list[dict[str, Any]]:
    with path.open(newline="", encoding="utf-8-sig") as fh:
        return [dict(r) for r in csv.DictReader(fh)]


def read_rows(path: Path | str) -> list[dict[str, Any]]:
    """Rows of an .xlsx or .csv file, mapped onto style fields."""
    file_path = Path(path)
    suffix = file_path.suffix.lower()
    if suffix in (".xlsx", ".xlsm"):
        raw = _read_xlsx(file_path)
    elif suffix == ".csv":
        raw = _read_csv(file_path)
    else:
        raise ValidationError(f"Unsupported file type: {suffix or file_path.name}")

    rows = [map_row(r) for r in raw]
    if raw and not any(rows):
        raise ValidationError("No recognised column headers (expected e.g. Style #, Units, Price, Rate).")
    return rows


def write_template(path: Path | str) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Styles"
    ws.append(TEMPLATE_HEADERS)
    ws.append(TEMPLATE_EXAMPLE)
    wb.save(path)


def _is_blank_row(row: Mapping[str, Any]) -> bool:
    return all(is_blank(row.get(k)) for k in EDITABLE_FIELDS)


class ImportService:
    def __init__(self, store: StyleStore, config: BusinessConfig, executor: RetryExecutor | None = None):
        self.store = store
        self.config = config
        self.executor = executor or RetryExecutor.from_config(config)

    async def import_rows(self, customer_id: str, rows: Iterable[Mapping[str, Any]]) -> ImportSummary:
        """Validate and create rows one at a time.

        Blank rows are skipped. A row that fails validation or persistence is
        recorded as an error and the batch carries on.
        """
        imported = 0
        skipped = 0
        errors: list[str] = []

        for index, row in enumerate(rows, start=1):
            if _is_blank_row(row):
                skipped += 1
                continue

            label = f"Row {index}" + (f" ({row.get('style_code')})" if row.get("style_code") else "")
            result = validate_record(row, self.config)
            if not result.is_valid:
                errors.append(f"{label}: {'; '.join(result.field_errors.values())}")
                continue

            payload = coerce_values({k: row[k] for k in EDITABLE_FIELDS if k in row})
            for k in TEXT_FIELDS:
                payload.setdefault(k, "")
            payload["customer_id"] = customer_id
            try:
                await self.executor.run(lambda: self.store.create_style(payload))
                imported += 1
            except Exception as e:
                log.warning("Import failed for %s: %s", label, e)
                errors.append(f"{label}: {user_message(e)}")

        log.info("import_finished customer=%s imported=%s skipped=%s errors=%s", customer_id, imported, skipped, len(errors))
        return ImportSummary(imported=imported, skipped=skipped, errors=tuple(errors))

    async def import_file(self, customer_id: str, path: Path | str) -> ImportSummary:
        return await self.import_rows(customer_id, read_rows(path))
