"""
lrsync/blueprints/sales/routes.py

Sales routes.

Includes:
- List with server-side filters (search, tax month, tax type) and commission linkage
- Create from a TIN library entry, update, soft delete
- Remarks add / edit / delete, plus the bulk /api/update-sale-remarks endpoint
- Custom spreadsheet export with caller-selected fields

IMPORTANT:
- UI is never trusted. Area scoping and validation are server-side.
- Attachment URL lists are written by the upload endpoints; here they are
  only validated as lists of strings.
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_

from ...audit import log_notification, serialize_model
from ...exports import DEFAULT_SALES_FIELDS, build_custom_sales_workbook, export_filename, workbook_response
from ...extensions import db
from ...models import ROLE_SUPER_ADMIN, SALE_ATTACHMENT_FIELDS, TAX_TYPES, CommissionReport, Sale, TaxpayerListing
from ...remarks import add_remark, delete_remark, dump_remarks, edit_remark, parse_remarks, validate_remarks
from ...security import api_role_required, area_by_user_uuid, can_access_record, record_access_required, scope_to_area
from ...session import get_auth_session
from ...utils import clean_str, normalize_digits, paginate, parse_date, parse_decimal, request_data

sales_bp = Blueprint("sales", __name__, url_prefix="/api")


def _load_sale(sale_id: int, **_: object) -> Sale:
    sale = db.get_or_404(Sale, sale_id)
    if sale.is_deleted:
        abort(404, description="Sale not found.")
    return sale


def _month_range(value: str) -> tuple[date, date] | None:
    start = parse_date(value)
    if start is None:
        return None
    start = start.replace(day=1)
    if start.month == 12:
        return start, date(start.year + 1, 1, 1)
    return start, date(start.year, start.month + 1, 1)


def _filtered_sales_query():
    """Non-deleted, area-scoped sales with the ?search/tax_month/tax_type filters applied."""
    q = scope_to_area(Sale.query.filter(Sale.is_deleted.is_(False)), Sale)

    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Sale.name.ilike(like),
                Sale.tin.ilike(f"%{normalize_digits(search) or search}%"),
                func.coalesce(Sale.invoice_number, "").ilike(like),
            )
        )

    tax_type = (request.args.get("tax_type") or "").strip()
    if tax_type and tax_type != "all":
        q = q.filter(Sale.tax_type == tax_type)

    month = (request.args.get("tax_month") or "").strip()
    if month and month != "all":
        bounds = _month_range(month)
        if bounds is None:
            abort(400, description="tax_month must be YYYY-MM.")
        q = q.filter(Sale.tax_month >= bounds[0], Sale.tax_month < bounds[1])

    return q.order_by(Sale.created_at.desc(), Sale.id.desc())


def _commission_by_sale_uuid(sale_uuids) -> dict:
    """{sale uuid: report info} for reports that include any of the sales."""
    wanted = set(sale_uuids)
    if not wanted:
        return {}
    linkage = {}
    for report in CommissionReport.query.order_by(CommissionReport.report_number.asc()).all():
        for sale_uuid in report.sales_uuids or []:
            if sale_uuid in wanted:
                linkage[sale_uuid] = {
                    "report_number": report.report_number,
                    "created_by": report.created_by,
                    "creator_name": report.creator.full_name if report.creator else None,
                    "created_at": report.created_at.isoformat() if report.created_at else None,
                    "status": report.status,
                    "deleted_at": report.deleted_at.isoformat() if report.deleted_at else None,
                }
    return linkage


def _attachment_list(value, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        abort(400, description=f"{field} must be a list of URLs.")
    return value


def _resolve_taxpayer(data: dict) -> TaxpayerListing:
    taxpayer = None
    tin_id = data.get("tin_id")
    if tin_id not in (None, ""):
        taxpayer = db.session.get(TaxpayerListing, int(tin_id)) if str(tin_id).isdigit() else None
    elif data.get("tin"):
        taxpayer = TaxpayerListing.query.filter_by(tin=normalize_digits(data.get("tin")), type="sales").first()
    if taxpayer is None:
        abort(400, description="Select a taxpayer from the TIN library.")
    return taxpayer


def _apply_sale_fields(sale: Sale, data: dict, partial: bool) -> None:
    if not partial or "tax_month" in data:
        tax_month = parse_date(data.get("tax_month"))
        if tax_month is None:
            abort(400, description="Tax month is required.")
        sale.tax_month = tax_month.replace(day=1)

    if not partial or "tax_type" in data:
        tax_type = clean_str(data.get("tax_type"))
        if tax_type not in TAX_TYPES:
            abort(400, description="Tax type must be 'vat' or 'non-vat'.")
        sale.tax_type = tax_type

    if not partial or "gross_taxable" in data:
        gross = parse_decimal(data.get("gross_taxable"))
        if gross is None or gross < 0:
            abort(400, description="Gross taxable must be a non-negative amount.")
        sale.gross_taxable = gross

    if not partial or "total_actual_amount" in data:
        total = parse_decimal(data.get("total_actual_amount"))
        sale.total_actual_amount = total if total is not None else sale.gross_taxable

    if not partial or "sale_type" in data:
        sale.sale_type = clean_str(data.get("sale_type")) or "invoice"

    if not partial or "invoice_number" in data:
        sale.invoice_number = clean_str(data.get("invoice_number"))

    if not partial or "pickup_date" in data:
        sale.pickup_date = parse_date(data.get("pickup_date"))

    for field in SALE_ATTACHMENT_FIELDS:
        if not partial or field in data:
            setattr(sale, field, _attachment_list(data.get(field), field))


def _sale_payload(sale: Sale, areas: dict, linkage: dict) -> dict:
    data = sale.to_dict()
    data["user_assigned_area"] = areas.get(sale.user_uuid)
    data["files_count"] = sale.files_count
    data["commission"] = linkage.get(sale.uuid)
    return data


# ---------------------------------------------------------------------
# List / view
# ---------------------------------------------------------------------

@sales_bp.route("/sales")
@api_role_required()
def list_sales():
    page = paginate(_filtered_sales_query(), serializer=lambda s: s)
    sales = page["items"]
    areas = area_by_user_uuid(s.user_uuid for s in sales)
    linkage = _commission_by_sale_uuid(s.uuid for s in sales)
    page["items"] = [_sale_payload(s, areas, linkage) for s in sales]
    return jsonify(page)


@sales_bp.route("/sales/<int:sale_id>")
@api_role_required()
@record_access_required(_load_sale)
def get_sale(sale_id: int):
    sale = _load_sale(sale_id)
    return jsonify(
        _sale_payload(sale, area_by_user_uuid([sale.user_uuid]), _commission_by_sale_uuid([sale.uuid]))
    )


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------

@sales_bp.route("/sales", methods=["POST"])
@api_role_required()
def create_sale():
    auth = get_auth_session()
    data = request_data()
    taxpayer = _resolve_taxpayer(data)

    sale = Sale(
        tin_id=taxpayer.id,
        tin=taxpayer.tin,
        name=taxpayer.registered_name or "",
        type=taxpayer.type,
        substreet_street_brgy=taxpayer.substreet_street_brgy,
        district_city_zip=taxpayer.district_city_zip,
        date_added=date.today(),
        user_uuid=auth.profile.uuid,
        user_full_name=auth.profile.full_name,
    )
    _apply_sale_fields(sale, data, partial=False)

    remark = clean_str(data.get("remark"))
    if remark:
        sale.remarks = add_remark(None, remark, auth.profile)

    db.session.add(sale)
    db.session.commit()

    log_notification(
        "sale_created",
        f"Created sale for {sale.name} ({sale.tin}) - {sale.tax_month:%b %Y}",
        meta={"sale_uuid": sale.uuid, "gross_taxable": str(sale.gross_taxable)},
    )
    return jsonify(sale.to_dict()), 201


@sales_bp.route("/sales/<int:sale_id>", methods=["PUT", "PATCH"])
@api_role_required()
@record_access_required(_load_sale)
def update_sale(sale_id: int):
    sale = _load_sale(sale_id)
    before = serialize_model(sale)
    data = request_data()

    if "tin_id" in data or "tin" in data:
        taxpayer = _resolve_taxpayer(data)
        sale.tin_id = taxpayer.id
        sale.tin = taxpayer.tin
        sale.name = taxpayer.registered_name or sale.name
        sale.substreet_street_brgy = taxpayer.substreet_street_brgy
        sale.district_city_zip = taxpayer.district_city_zip

    _apply_sale_fields(sale, data, partial=True)
    db.session.commit()

    log_notification(
        "sale_updated",
        f"Updated sale for {sale.name} ({sale.tin})",
        meta={"before": before, "after": serialize_model(sale)},
    )
    return jsonify(sale.to_dict())


@sales_bp.route("/sales/<int:sale_id>", methods=["DELETE"])
@api_role_required()
@record_access_required(_load_sale)
def delete_sale(sale_id: int):
    """Soft delete: the row stays for commission history."""
    sale = _load_sale(sale_id)
    sale.is_deleted = True
    db.session.commit()

    log_notification(
        "sale_deleted",
        f"Deleted sale for {sale.name} ({sale.tin})",
        meta={"sale_uuid": sale.uuid},
    )
    return jsonify({"success": True})


# ---------------------------------------------------------------------
# Remarks
# ---------------------------------------------------------------------

def _remark_target(data: dict) -> dict:
    target = data.get("target")
    if not isinstance(target, dict):
        abort(400, description="target remark {uuid, date, remark} is required.")
    return target


@sales_bp.route("/sales/<int:sale_id>/remarks", methods=["POST", "PUT", "DELETE"])
@api_role_required()
@record_access_required(_load_sale)
def sale_remarks(sale_id: int):
    """
    POST   {remark}                 -> append
    PUT    {target, remark}         -> edit text of the matching remark
    DELETE {target}                 -> remove the matching remark
    """
    sale = _load_sale(sale_id)
    auth = get_auth_session()
    data = request_data()

    try:
        if request.method == "POST":
            sale.remarks = add_remark(sale.remarks, data.get("remark"), auth.profile)
            action = "sale_remark_added"
        elif request.method == "PUT":
            sale.remarks = edit_remark(sale.remarks, _remark_target(data), data.get("remark"))
            action = "sale_remark_updated"
        else:
            sale.remarks = delete_remark(sale.remarks, _remark_target(data))
            action = "sale_remark_deleted"
    except ValueError as exc:
        abort(400, description=str(exc))

    db.session.commit()
    log_notification(action, f"Remarks changed on sale {sale.name} ({sale.tin})", meta={"sale_uuid": sale.uuid})
    return jsonify({"success": True, "remarks": parse_remarks(sale.remarks)})


@sales_bp.route("/update-sale-remarks", methods=["POST"])
@api_role_required()
def update_sale_remarks():
    """Replace the whole remarks array: {saleId, remarks} -> {success}."""
    data = request_data()
    sale_id = data.get("saleId")
    if not sale_id:
        abort(400, description="Sale ID is required")

    remarks = data.get("remarks")
    if not isinstance(remarks, list):
        abort(400, description="remarks must be a list")
    try:
        remarks = validate_remarks(remarks)
    except ValueError as exc:
        abort(400, description=str(exc))

    if str(sale_id).isdigit():
        sale = db.session.get(Sale, int(sale_id))
    else:
        sale = Sale.query.filter_by(uuid=str(sale_id)).first()
    if sale is None or sale.is_deleted:
        abort(404, description="Sale not found.")
    if not can_access_record(sale):
        abort(403, description="Forbidden")

    sale.remarks = dump_remarks(remarks)
    db.session.commit()

    log_notification("sale_remarks_updated", f"Remarks replaced on sale {sale.name}", meta={"sale_uuid": sale.uuid})
    return jsonify({"success": True})


# ---------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------

@sales_bp.route("/sales/export", methods=["GET", "POST"])
@api_role_required()
def export_sales():
    """Custom export: ?fields=a,b,c (or JSON {fields: [...]}) plus the list filters."""
    data = request_data() if request.method == "POST" else {}
    fields = data.get("fields") or [f for f in (request.args.get("fields") or "").split(",") if f]
    fields = fields or DEFAULT_SALES_FIELDS

    sales = _filtered_sales_query().all()
    auth = get_auth_session()
    area = auth.profile.assigned_area if auth.role != ROLE_SUPER_ADMIN else None

    try:
        wb = build_custom_sales_workbook(
            sales, fields, area=area, areas=area_by_user_uuid(s.user_uuid for s in sales)
        )
    except ValueError as exc:
        abort(400, description=str(exc))

    filename = export_filename("Custom_Sales_Export", area)
    log_notification(
        "sales_exported",
        f"Exported sales to Excel ({len(sales)} records)",
        meta={"recordCount": len(sales), "selectedFields": list(fields), "filename": filename},
    )
    return workbook_response(wb, filename)
