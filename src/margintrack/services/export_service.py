from __future__ import annotations

import csv
import re
from datetime import date
from pathlib import Path
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from margintrack.config import BusinessConfig
from margintrack.domain.models import StyleRecord
from margintrack.services.formulas import compute_metrics

TEXT_COLUMNS = ["Style ID", "Factory", "Delivery Date", "Description", "Fabric/Trim", "Type"]


def export_headers(config: BusinessConfig) -> list[str]:
    cur = config.currency_code
    return TEXT_COLUMNS + [
        "Units", "Pack", "Price (USD)", "Rate",
        f"Extra Cost ({cur})", f"Selling Price ({cur})",
        f"LC ({cur})", f"Total Cost ({cur})", "Margin %",
        f"Revenue ({cur})", f"Profit ({cur})", f"Profit Per Unit ({cur})",
        "Val1", "Val2",
    ]


def _r2(value: float) -> float:
    return round(value, 2)


def format_currency(value: float, config: BusinessConfig) -> str:
    return f"{config.currency_symbol} {value:,.2f}"


def format_percent(value: float) -> str:
    return f"{value:.2f}%"


def _text_cells(r: StyleRecord) -> list[Any]:
    return [r.style_code, r.factory, r.delivery_date, r.description, r.fabric_trim, r.style_type]


def numeric_rows(records: Iterable[StyleRecord], config: BusinessConfig) -> list[list[Any]]:
    """One row per style; derived values rounded to 2 dp, missing inputs left empty."""
    out = []
    for r in records:
        m = compute_metrics(r, config)
        out.append(_text_cells(r) + [
            r.units, r.pack, r.price, r.rate,
            r.extra_cost, r.selling_price,
            _r2(m.landed_cost), _r2(m.total_cost_per_unit), _r2(m.margin_percent),
            _r2(m.revenue), _r2(m.total_profit), _r2(m.profit_per_unit),
            _r2(m.val1), _r2(m.val2),
        ])
    return out


def display_rows(records: Iterable[StyleRecord], config: BusinessConfig) -> list[list[Any]]:
    def money(v: float) -> str:
        return format_currency(v, config)

    out = []
    for r in records:
        m = compute_metrics(r, config)
        out.append(_text_cells(r) + [
            r.units, r.pack, r.price, r.rate,
            None if r.extra_cost is None else money(r.extra_cost),
            None if r.selling_price is None else money(r.selling_price),
            money(m.landed_cost), money(m.total_cost_per_unit), format_percent(m.margin_percent),
            money(m.revenue), money(m.total_profit), money(m.profit_per_unit),
            f"{m.val1:.2f}", f"{m.val2:.2f}",
        ])
    return out


def write_xlsx(path: Path | str, records: Iterable[StyleRecord], config: BusinessConfig, title: str = "Styles") -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31] or "Styles"

    headers = export_headers(config)
    ws.append(headers)
    for c in ws[1]:
        c.font = Font(bold=True)

    rows = numeric_rows(records, config)
    for row in rows:
        ws.append(row)

    # G..T: inputs then derived values
    formats = {
        "G": "#,##0", "H": "#,##0", "I": "#,##0.00", "J": "#,##0.00",
        "K": "#,##0.00", "L": "#,##0.00", "M": "#,##0.00", "N": "#,##0.00",
        "O": "0.00", "P": "#,##0.00", "Q": "#,##0.00", "R": "#,##0.00",
        "S": "0.00", "T": "0.00",
    }
    for r in range(2, ws.max_row + 1):
        for col, fmt in formats.items():
            ws[f"{col}{r}"].number_format = fmt

    ws.freeze_panes = "A2"
    widths = [14, 18, 14, 30, 18, 12] + [10] * 4 + [16] * 8 + [10, 10]
    for i, w in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = w

    if rows:
        tab = Table(displayName="StyleExport", ref=f"A1:{get_column_letter(len(headers))}{ws.max_row}")
        tab.tableStyleInfo = TableStyleInfo(name="TableStyleMedium9", showRowStripes=True, showColumnStripes=False)
        ws.add_table(tab)

    wb.save(path)


def write_csv(path: Path | str, records: Iterable[StyleRecord], config: BusinessConfig) -> None:
    with Path(path).open("w", newline="", encoding="utf-8") as fh:
        w = csv.writer(fh)
        w.writerow(export_headers(config))
        w.writerows(display_rows(records, config))


def export_filename(customer_name: str, ext: str, day: date | None = None) -> str:
    """`Acme Co.` -> `Acme_Co__styles_2025-03-01.xlsx`."""
    safe = re.sub(r"[^A-Za-z0-9]", "_", customer_name) or "customer"
    return f"{safe}_styles_{(day or date.today()).isoformat()}.{ext.lstrip('.')}"
