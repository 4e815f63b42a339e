"""
lrsync/exports.py

Spreadsheet exports (openpyxl).

Covers:
- field_grid(): header + data rows for a selected subset of fields, in the
  order the caller selected them
- Field catalogs for sales, purchases and commission reports
- Workbook builders:
    custom sales export, purchases report (summary + detail),
    custom purchases export, commission reports export,
    single commission report (report info + per-sale blocks + agent table)
- workbook_response(): stream a workbook as an .xlsx download

IMPORTANT:
- Builders only read model attributes; they never touch the session.
- Unknown field keys are rejected with ValueError (the views answer 400).
"""

from __future__ import annotations

import io
import re
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote

import openpyxl
from flask import send_file
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .models import Sale, parse_json_list
from .remarks import sorted_remarks

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(start_color="D9E2F3", end_color="D9E2F3", fill_type="solid")
TITLE_FONT = Font(size=14, bold=True)

Getter = Callable[[Any, Dict[str, Any]], Any]


# ---------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------
def format_tin(tin: Optional[str]) -> str:
    """Digits only, a dash after every group of three: 123456789 -> 123-456-789."""
    digits = re.sub(r"\D", "", tin or "")
    return re.sub(r"(\d{3})(?=\d)", r"\1-", digits)


def format_currency(amount) -> str:
    value = Decimal(str(amount or 0))
    return f"₱{value:,.2f}"


def _fmt_date(value, pattern: str) -> str:
    return value.strftime(pattern) if value else ""


def _number(value) -> float:
    return float(value) if value is not None else 0.0


def _join(urls) -> str:
    return ", ".join(urls or [])


def _file_names(urls) -> str:
    return ", ".join(unquote(u.rsplit("/", 1)[-1]) for u in (urls or []))


def _latest_remark_with_author(raw: Optional[str]) -> str:
    remarks = sorted_remarks(raw)
    if not remarks:
        return ""
    recent = remarks[0]
    try:
        when = datetime.fromisoformat(str(recent.get("date"))).strftime("%b %d, %Y")
    except ValueError:
        when = str(recent.get("date") or "")
    return f"{recent.get('remark', '')} (by {recent.get('name', '')} on {when})"


def _area(row, ctx: Dict[str, Any]) -> str:
    areas = ctx.get("areas") or {}
    return areas.get(getattr(row, "user_uuid", None)) or ctx.get("area") or "N/A"


# ---------------------------------------------------------------------
# Field catalogs: key -> (label, width, getter)
# ---------------------------------------------------------------------
SALES_EXPORT_FIELDS: "OrderedDict[str, Tuple[str, int, Getter]]" = OrderedDict(
    [
        ("tax_month", ("Tax Month", 15, lambda s, c: _fmt_date(s.tax_month, "%b %Y"))),
        ("tin", ("TIN", 15, lambda s, c: format_tin(s.tin))),
        ("name", ("Name", 30, lambda s, c: s.name or "")),
        ("address", ("Address", 30, lambda s, c: s.substreet_street_brgy or "")),
        ("tax_type", ("Tax Type", 15, lambda s, c: (s.tax_type or "").upper())),
        ("sale_type", ("Sale Type", 15, lambda s, c: (s.sale_type or "invoice").upper())),
        ("gross_taxable", ("Gross Taxable", 15, lambda s, c: _number(s.gross_taxable))),
        ("total_actual_amount", ("Total Actual Amount", 15, lambda s, c: _number(s.total_actual_amount))),
        ("invoice_number", ("Invoice Number", 15, lambda s, c: s.invoice_number or "")),
        ("pickup_date", ("Pickup Date", 15, lambda s, c: _fmt_date(s.pickup_date, "%b %d, %Y"))),
        ("area", ("Area", 15, _area)),
        ("files_count", ("Files Count", 15, lambda s, c: s.files_count)),
        ("cheque_files", ("Cheque Files", 35, lambda s, c: _join(s.cheque))),
        ("voucher_files", ("Voucher Files", 35, lambda s, c: _join(s.voucher))),
        ("invoice_files", ("Invoice Files", 35, lambda s, c: _join(s.invoice))),
        ("doc_2307_files", ("2307 Files", 35, lambda s, c: _join(s.doc_2307))),
        ("deposit_files", ("Deposit Files", 35, lambda s, c: _join(s.deposit_slip))),
    ]
)

PURCHASES_EXPORT_FIELDS: "OrderedDict[str, Tuple[str, int, Getter]]" = OrderedDict(
    [
        ("tax_month", ("Tax Month", 15, lambda p, c: _fmt_date(p.tax_month, "%B %Y"))),
        ("tin", ("TIN", 15, lambda p, c: format_tin(p.tin))),
        ("name", ("Name", 30, lambda p, c: p.name or "")),
        ("substreet_street_brgy", ("Address (Street/Brgy)", 25, lambda p, c: p.substreet_street_brgy or "")),
        ("district_city_zip", ("Address (City/District)", 25, lambda p, c: p.district_city_zip or "")),
        ("tax_type", ("Tax Type", 15, lambda p, c: (p.tax_type or "").upper())),
        ("gross_taxable", ("Gross Taxable Amount", 20, lambda p, c: _number(p.gross_taxable))),
        ("invoice_number", ("Invoice Number", 15, lambda p, c: p.invoice_number or "")),
        ("official_receipt", ("Official Receipt", 35, lambda p, c: _file_names(p.official_receipt))),
        ("remarks", ("Latest Remark", 30, lambda p, c: _latest_remark_with_author(p.remarks))),
        ("user_assigned_area", ("Area", 15, _area)),
        ("created_at", ("Date Created", 18, lambda p, c: _fmt_date(p.created_at, "%b %d, %Y %H:%M"))),
        ("updated_at", ("Last Updated", 18, lambda p, c: _fmt_date(p.updated_at, "%b %d, %Y %H:%M"))),
    ]
)

COMMISSION_REPORTS_EXPORT_FIELDS: "OrderedDict[str, Tuple[str, int, Getter]]" = OrderedDict(
    [
        ("report_number", ("Report Number", 15, lambda r, c: f"#{r.report_number}")),
        ("created_by", ("Created By", 25, lambda r, c: r.creator.full_name if r.creator else "Unknown User")),
        (
            "assigned_area",
            ("Assigned Area", 25, lambda r, c: (r.creator.assigned_area if r.creator else None) or c.get("area") or "N/A"),
        ),
        ("created_date", ("Created Date", 20, lambda r, c: _fmt_date(r.created_at, "%b %d, %Y %H:%M"))),
        ("status", ("Status", 15, lambda r, c: (r.status or "unknown").upper())),
        ("sales_count", ("Sales Count", 15, lambda r, c: len(r.sales_uuids or []))),
        ("accounting_attachments", ("Accounting Attachments", 15, lambda r, c: len(parse_json_list(r.accounting_pot)))),
        ("secretary_attachments", ("Secretary Attachments", 15, lambda r, c: len(parse_json_list(r.secretary_pot)))),
        ("remarks", ("Remarks", 25, lambda r, c: r.remarks or "")),
    ]
)

DEFAULT_SALES_FIELDS = [
    "tax_month", "tin", "name", "address", "tax_type", "sale_type",
    "gross_taxable", "invoice_number", "pickup_date",
]
DEFAULT_PURCHASES_FIELDS = ["tax_month", "tin", "name", "tax_type", "gross_taxable", "invoice_number"]
DEFAULT_COMMISSION_REPORT_FIELDS = [
    "report_number", "created_by", "assigned_area", "created_date", "status", "sales_count", "remarks",
]


# ---------------------------------------------------------------------
# Grid + sheet helpers
# ---------------------------------------------------------------------
def _validate_fields(fields: Sequence[str], catalog) -> List[str]:
    selected = [f for f in fields if f]
    if not selected:
        raise ValueError("Please select at least one field to export.")
    unknown = [f for f in selected if f not in catalog]
    if unknown:
        raise ValueError(f"Unknown export field(s): {', '.join(unknown)}")
    return selected


def field_grid(
    rows: Iterable[Any],
    fields: Sequence[str],
    catalog,
    context: Optional[Dict[str, Any]] = None,
) -> List[List[Any]]:
    """Header row (labels) followed by one row per record, columns in the selected order."""
    selected = _validate_fields(fields, catalog)
    ctx = context or {}
    grid: List[List[Any]] = [[catalog[key][0] for key in selected]]
    for row in rows:
        grid.append([catalog[key][2](row, ctx) for key in selected])
    return grid


def _append_rows(ws, rows: Iterable[Sequence[Any]]) -> None:
    for row in rows:
        ws.append(list(row))


def _style_header_row(ws, row_idx: int) -> None:
    for cell in ws[row_idx]:
        if cell.value is not None:
            cell.font = HEADER_FONT
            cell.fill = HEADER_FILL


def _set_widths(ws, widths: Sequence[int]) -> None:
    for idx, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(idx)].width = width


def _generated_on() -> str:
    return datetime.now().strftime("%B %d, %Y %I:%M %p")


def _custom_export_sheet(ws, title: str, grid: List[List[Any]], widths: Sequence[int]) -> None:
    """Title, generation info, blank row, header row, data rows."""
    record_count = len(grid) - 1
    ws.append([title])
    ws["A1"].font = TITLE_FONT
    ws.append(["Generated on:", _generated_on()])
    ws.append(["Total Records:", record_count])
    ws.append(["Selected Fields:", len(grid[0])])
    ws.append([])
    _append_rows(ws, grid)
    _style_header_row(ws, ws.max_row - record_count)
    _set_widths(ws, widths)


def _new_workbook(title: str):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    return wb, ws


# ---------------------------------------------------------------------
# Workbook builders
# ---------------------------------------------------------------------
def build_custom_sales_workbook(sales, fields, area: Optional[str] = None, areas=None):
    selected = _validate_fields(fields, SALES_EXPORT_FIELDS)
    grid = field_grid(sales, selected, SALES_EXPORT_FIELDS, {"area": area, "areas": areas})
    wb, ws = _new_workbook("Custom Sales Export")
    title = f"CUSTOM SALES EXPORT{f' - {area}' if area else ''}"
    _custom_export_sheet(ws, title, grid, [SALES_EXPORT_FIELDS[k][1] for k in selected])
    return wb


def build_commission_reports_workbook(reports, fields, area: Optional[str] = None):
    selected = _validate_fields(fields, COMMISSION_REPORTS_EXPORT_FIELDS)
    grid = field_grid(reports, selected, COMMISSION_REPORTS_EXPORT_FIELDS, {"area": area})
    wb, ws = _new_workbook("Commission Reports Export")
    title = f"COMMISSION REPORTS EXPORT{f' - {area}' if area else ''}"
    _custom_export_sheet(ws, title, grid, [COMMISSION_REPORTS_EXPORT_FIELDS[k][1] for k in selected])
    return wb


PURCHASES_REPORT_HEADERS = [
    ("Tax Month", 15),
    ("TIN", 15),
    ("Name", 30),
    ("Address", 25),
    ("Tax Type", 12),
    ("Gross Taxable", 15),
    ("Total Actual Amount", 18),
    ("Invoice #", 15),
    ("Category", 18),
    ("Files Count", 12),
    ("Remark", 30),
    ("Date Created", 20),
]


def purchases_summary(purchases) -> Dict[str, Any]:
    purchases = list(purchases)
    return {
        "total": len(purchases),
        "vat": sum(1 for p in purchases if p.tax_type == "vat"),
        "non_vat": sum(1 for p in purchases if p.tax_type == "non-vat"),
        "gross_taxable": sum((Decimal(str(p.gross_taxable or 0)) for p in purchases), Decimal("0")),
        "total_actual_amount": sum((Decimal(str(p.total_actual_amount or 0)) for p in purchases), Decimal("0")),
    }


def build_purchases_report_workbook(purchases, profile=None):
    purchases = list(purchases)
    stats = purchases_summary(purchases)
    wb, ws = _new_workbook("Purchases Report")

    ws.append(["PURCHASES MANAGEMENT REPORT"])
    ws["A1"].font = TITLE_FONT
    ws.append(["Generated on:", _generated_on()])
    ws.append(
        [
            "Exported by:",
            getattr(profile, "full_name", None) or "Unknown User",
            getattr(profile, "email", None) or "",
            getattr(profile, "assigned_area", None) or "",
        ]
    )
    ws.append([])
    ws.append(["SUMMARY STATISTICS"])
    ws.cell(row=ws.max_row, column=1).font = HEADER_FONT
    ws.append(["Total Purchases", stats["total"]])
    ws.append(["VAT Purchases", stats["vat"]])
    ws.append(["Non-VAT Purchases", stats["non_vat"]])
    ws.append(["Total Gross Taxable", format_currency(stats["gross_taxable"])])
    ws.append(["Total Actual Amount", format_currency(stats["total_actual_amount"])])
    ws.append([])
    ws.append(["DETAILED PURCHASE RECORDS"])
    ws.cell(row=ws.max_row, column=1).font = HEADER_FONT
    ws.append([label for label, _ in PURCHASES_REPORT_HEADERS])
    _style_header_row(ws, ws.max_row)

    for p in purchases:
        ws.append(
            [
                _fmt_date(p.tax_month, "%b %Y"),
                format_tin(p.tin),
                p.name or "",
                p.substreet_street_brgy or "",
                (p.tax_type or "").upper(),
                _number(p.gross_taxable),
                _number(p.total_actual_amount),
                p.invoice_number or "",
                p.category_name or "",
                p.files_count,
                (sorted_remarks(p.remarks)[:1] or [{}])[0].get("remark", ""),
                _fmt_date(p.created_at, "%b %d, %Y %H:%M"),
            ]
        )

    _set_widths(ws, [w for _, w in PURCHASES_REPORT_HEADERS])
    return wb


def build_custom_purchases_workbook(purchases, fields, profile=None, role: Optional[str] = None, areas=None):
    purchases = list(purchases)
    selected = _validate_fields(fields, PURCHASES_EXPORT_FIELDS)
    grid = field_grid(purchases, selected, PURCHASES_EXPORT_FIELDS, {"areas": areas})

    wb, ws = _new_workbook("Purchases")
    _append_rows(ws, grid)
    _style_header_row(ws, 1)
    _set_widths(ws, [max(len(PURCHASES_EXPORT_FIELDS[k][0]), 15) for k in selected])

    stats = purchases_summary(purchases)
    summary = wb.create_sheet("Summary")
    _append_rows(
        summary,
        [
            ["Metric", "Value"],
            ["Total Records", stats["total"]],
            ["VAT Purchases", stats["vat"]],
            ["Non-VAT Purchases", stats["non_vat"]],
            ["Total Gross Taxable", format_currency(stats["gross_taxable"])],
            ["Export Date", datetime.now().strftime("%b %d, %Y %H:%M")],
            ["Exported By", getattr(profile, "full_name", None) or getattr(profile, "email", None) or "Unknown"],
            ["Role", role or ""],
        ],
    )
    _style_header_row(summary, 1)
    _set_widths(summary, [20, 30])
    return wb


AGENT_TABLE_COLUMNS: List[Tuple[str, int, Callable[[Any], Any]]] = [
    ("RESERVATION DATE", 18, lambda a: _fmt_date(a.reservation_date, "%b %d, %Y")),
    ("DEVELOPER", 15, lambda a: a.developer or ""),
    ("AGENT NAME", 20, lambda a: a.agent_name or ""),
    ("CLIENT", 20, lambda a: a.client or ""),
    ("TYPE", 10, lambda a: a.comm_type or "COMM"),
    ("BDO ACCOUNT #", 18, lambda a: a.bdo_account or ""),
    ("COMM", 15, lambda a: _number(a.comm)),
    ("NET OF VAT", 15, lambda a: _number(a.net_of_vat)),
    ("STATUS", 12, lambda a: a.status or ""),
    ("AGENT CALC TYPE", 18, lambda a: a.calculation_type or ""),
    ("AGENT'S RATE", 15, lambda a: _number(a.agents_rate) if a.agents_rate is not None else ""),
    ("AGENT", 15, lambda a: _number(a.agent_amount)),
    ("VAT", 15, lambda a: _number(a.agent_vat)),
    ("EWT", 15, lambda a: _number(a.agent_ewt)),
    ("NET COMM", 15, lambda a: _number(a.agent_net_comm)),
    ("UM NAME", 15, lambda a: a.um_name or ""),
    ("UM BDO ACCOUNT #", 18, lambda a: a.um_bdo_account or ""),
    ("UM CALC TYPE", 15, lambda a: a.um_calculation_type or ""),
    ("UM RATE", 12, lambda a: _number(a.um_rate) if a.um_rate is not None else ""),
    ("UM AMOUNT", 15, lambda a: _number(a.um_amount)),
    ("UM VAT", 15, lambda a: _number(a.um_vat)),
    ("UM EWT", 15, lambda a: _number(a.um_ewt)),
    ("UM NET COMM", 15, lambda a: _number(a.um_net_comm)),
    ("TL NAME", 15, lambda a: a.tl_name or ""),
    ("TL BDO ACCOUNT #", 18, lambda a: a.tl_bdo_account or ""),
    ("TL CALC TYPE", 15, lambda a: a.tl_calculation_type or ""),
    ("TL RATE", 12, lambda a: _number(a.tl_rate) if a.tl_rate is not None else ""),
    ("TL AMOUNT", 15, lambda a: _number(a.tl_amount)),
    ("TL VAT", 15, lambda a: _number(a.tl_vat)),
    ("TL EWT", 15, lambda a: _number(a.tl_ewt)),
    ("TL NET COMM", 15, lambda a: _number(a.tl_net_comm)),
    ("REMARKS", 20, lambda a: a.secretary_remarks or ""),
]

# Columns summed on the per-sale totals row
_TOTAL_COLUMNS = {
    "COMM", "NET OF VAT", "AGENT", "VAT", "EWT", "NET COMM",
    "UM AMOUNT", "UM VAT", "UM EWT", "UM NET COMM",
    "TL AMOUNT", "TL VAT", "TL EWT", "TL NET COMM",
}


def _sale_block(ws, sale: Sale, area: str) -> None:
    ws.append([f"Sale Record Details - Invoice # {sale.invoice_number or 'N/A'}"])
    ws.cell(row=ws.max_row, column=1).font = HEADER_FONT
    ws.append(
        [
            "Tax Month:", _fmt_date(sale.tax_month, "%b %Y") or "N/A", "", "",
            "Tax Type:", (sale.tax_type or "").upper(), "", "",
            "Total Actual Amount:", format_currency(sale.total_actual_amount),
        ]
    )
    ws.append(
        [
            "TIN:", format_tin(sale.tin) or "N/A", "", "",
            "Sale Type:", (sale.sale_type or "invoice").upper(), "", "",
            "Invoice #:", sale.invoice_number or "N/A",
        ]
    )
    ws.append(
        [
            "Name:", sale.name, "", "",
            "Gross Taxable:", format_currency(sale.gross_taxable), "", "",
            "Pickup Date:", _fmt_date(sale.pickup_date, "%b %d, %Y") or "N/A",
        ]
    )
    ws.append(["Area:", area or "N/A"])
    ws.append([])


def build_commission_report_workbook(report, sales, breakdowns):
    """One report: info block, then per sale its details, agent table and totals row."""
    creator = report.creator
    area = creator.assigned_area if creator else ""
    wb, ws = _new_workbook("Commission Report")

    ws.append(
        [
            f"Commission Report #{report.report_number} - "
            f"{(creator.full_name if creator else None) or 'User'} - "
            f"{datetime.now():%Y-%m-%d %H-%M}"
        ]
    )
    ws["A1"].font = TITLE_FONT
    ws.append([])
    ws.append(["Report Number:", report.report_number])
    ws.append(["Created By:", creator.full_name if creator else ""])
    ws.append(["Area:", area or ""])
    ws.append(["Status:", report.status])
    ws.append(["Created At:", _fmt_date(report.created_at, "%b %d, %Y")])
    ws.append([])

    breakdowns = list(breakdowns)
    for sale in sales:
        _sale_block(ws, sale, area)

        ws.append([label for label, _, _ in AGENT_TABLE_COLUMNS])
        _style_header_row(ws, ws.max_row)

        sale_agents = [a for a in breakdowns if a.sale_uuid == sale.uuid]
        if sale_agents:
            for agent in sale_agents:
                ws.append([getter(agent) for _, _, getter in AGENT_TABLE_COLUMNS])

            totals: List[Any] = []
            for label, _, getter in AGENT_TABLE_COLUMNS:
                if label in _TOTAL_COLUMNS:
                    totals.append(round(sum(getter(a) or 0 for a in sale_agents), 2))
                elif label == "CLIENT":
                    totals.append("Totals:")
                else:
                    totals.append("")
            ws.append(totals)
            for cell in ws[ws.max_row]:
                cell.font = HEADER_FONT
        else:
            ws.append(["No commission records added yet."])

        ws.append([])
        ws.append([])

    _set_widths(ws, [w for _, w, _ in AGENT_TABLE_COLUMNS])
    ws["A1"].alignment = Alignment(horizontal="left")
    return wb


# ---------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------
def workbook_bytes(wb) -> io.BytesIO:
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def workbook_response(wb, filename: str):
    return send_file(
        workbook_bytes(wb),
        as_attachment=True,
        download_name=filename,
        mimetype=XLSX_MIMETYPE,
    )


def export_filename(prefix: str, area: Optional[str] = None) -> str:
    area_part = "_" + re.sub(r"\s+", "_", area) if area else ""
    return f"{prefix}{area_part}_{datetime.now():%Y-%m-%d}.xlsx"
