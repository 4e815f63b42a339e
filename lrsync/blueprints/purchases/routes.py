"""
Purchases routes.

Includes:
- List with server-side filters (search, tax month, tax type, category)
- Create (get-or-create the purchases-type TIN library entry), update, soft delete
- Remarks add / edit / delete
- Purchases report export (summary statistics + detailed records)
- Custom export with caller-selected fields (+ Summary sheet)

IMPORTANT:
- UI is never trusted. Area scoping and validation are server-side.
- official_receipt holds the public URLs returned by
  /api/upload-official-receipt-purchases.
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_

from ...audit import log_notification, serialize_model
from ...exports import (
    DEFAULT_PURCHASES_FIELDS,
    build_custom_purchases_workbook,
    build_purchases_report_workbook,
    export_filename,
    workbook_response,
)
from ...extensions import db
from ...models import TAX_TYPES, Purchase, PurchaseCategory, TaxpayerListing
from ...remarks import add_remark, delete_remark, edit_remark, parse_remarks
from ...security import api_role_required, area_by_user_uuid, record_access_required, scope_to_area
from ...session import get_auth_session
from ...utils import (
    clean_str,
    normalize_digits,
    paginate,
    parse_date,
    parse_decimal,
    parse_optional_int,
    request_data,
)

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api")


def _load_purchase(purchase_id: int, **_: object) -> Purchase:
    purchase = db.get_or_404(Purchase, purchase_id)
    if purchase.is_deleted:
        abort(404, description="Purchase not found.")
    return purchase


def _filtered_purchases_query():
    q = scope_to_area(Purchase.query.filter(Purchase.is_deleted.is_(False)), Purchase)

    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Purchase.name.ilike(like),
                Purchase.tin.ilike(f"%{normalize_digits(search) or search}%"),
                func.coalesce(Purchase.invoice_number, "").ilike(like),
            )
        )

    tax_type = (request.args.get("tax_type") or "").strip()
    if tax_type and tax_type != "all":
        q = q.filter(Purchase.tax_type == tax_type)

    category_id = parse_optional_int(request.args.get("category_id"))
    if category_id:
        q = q.filter(Purchase.category_id == category_id)

    month = (request.args.get("tax_month") or "").strip()
    if month and month != "all":
        start = parse_date(month)
        if start is None:
            abort(400, description="tax_month must be YYYY-MM.")
        start = start.replace(day=1)
        end = date(start.year + 1, 1, 1) if start.month == 12 else date(start.year, start.month + 1, 1)
        q = q.filter(Purchase.tax_month >= start, Purchase.tax_month < end)

    return q.order_by(Purchase.created_at.desc(), Purchase.id.desc())


def _get_or_create_taxpayer(tin: str, data: dict) -> TaxpayerListing:
    """Purchases-type TIN library entry for `tin`, created from the form when missing."""
    auth = get_auth_session()
    taxpayer = TaxpayerListing.query.filter_by(tin=tin, type="purchases").first()
    if taxpayer is not None:
        return taxpayer

    taxpayer = TaxpayerListing(
        tin=tin,
        type="purchases",
        registered_name=clean_str(data.get("name")),
        substreet_street_brgy=clean_str(data.get("substreet_street_brgy")),
        district_city_zip=clean_str(data.get("district_city_zip")),
        date_added=date.today(),
        user_uuid=auth.profile.uuid,
        user_full_name=auth.profile.full_name,
    )
    db.session.add(taxpayer)
    db.session.flush()
    return taxpayer


def _validated_category(value) -> int | None:
    category_id = parse_optional_int(value)
    if category_id is None:
        return None
    category = db.session.get(PurchaseCategory, category_id)
    if category is None or category.is_deleted:
        abort(400, description="Invalid purchase category.")
    return category.id


def _apply_purchase_fields(purchase: Purchase, data: dict, partial: bool) -> None:
    if not partial or "tax_month" in data:
        tax_month = parse_date(data.get("tax_month"))
        if tax_month is None:
            abort(400, description="Tax month is required.")
        purchase.tax_month = tax_month.replace(day=1)

    if not partial or "name" in data:
        name = clean_str(data.get("name"))
        if not name:
            abort(400, description="Name is required.")
        purchase.name = name

    for key in ("substreet_street_brgy", "district_city_zip", "invoice_number"):
        if not partial or key in data:
            setattr(purchase, key, clean_str(data.get(key)))

    if not partial or "tax_type" in data:
        tax_type = clean_str(data.get("tax_type"))
        if tax_type not in TAX_TYPES:
            abort(400, description="Tax type must be 'vat' or 'non-vat'.")
        purchase.tax_type = tax_type

    if not partial or "gross_taxable" in data:
        gross = parse_decimal(data.get("gross_taxable"))
        if gross is None or gross < 0:
            abort(400, description="Gross taxable must be a non-negative amount.")
        purchase.gross_taxable = gross

    if not partial or "total_actual_amount" in data:
        total = parse_decimal(data.get("total_actual_amount"))
        purchase.total_actual_amount = total if total is not None else purchase.gross_taxable

    if not partial or "official_receipt" in data:
        receipts = data.get("official_receipt") or []
        if not isinstance(receipts, list) or not all(isinstance(r, str) for r in receipts):
            abort(400, description="official_receipt must be a list of URLs.")
        purchase.official_receipt = receipts

    if not partial or "category_id" in data:
        purchase.category_id = _validated_category(data.get("category_id"))


def _purchase_payload(purchase: Purchase, areas: dict) -> dict:
    data = purchase.to_dict()
    data["user_assigned_area"] = areas.get(purchase.user_uuid)
    data["files_count"] = purchase.files_count
    return data


# ---------------------------------------------------------------------
# List / view
# ---------------------------------------------------------------------

@purchases_bp.route("/purchases")
@api_role_required()
def list_purchases():
    page = paginate(_filtered_purchases_query(), serializer=lambda p: p)
    areas = area_by_user_uuid(p.user_uuid for p in page["items"])
    page["items"] = [_purchase_payload(p, areas) for p in page["items"]]
    return jsonify(page)


@purchases_bp.route("/purchases/<int:purchase_id>")
@api_role_required()
@record_access_required(_load_purchase)
def get_purchase(purchase_id: int):
    purchase = _load_purchase(purchase_id)
    return jsonify(_purchase_payload(purchase, area_by_user_uuid([purchase.user_uuid])))


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------

@purchases_bp.route("/purchases", methods=["POST"])
@api_role_required()
def create_purchase():
    auth = get_auth_session()
    data = request_data()

    tin = normalize_digits(data.get("tin"))
    if not tin:
        abort(400, description="TIN is required.")

    purchase = Purchase(
        tin=tin,
        date_added=date.today(),
        user_uuid=auth.profile.uuid,
        user_full_name=auth.profile.full_name,
    )
    _apply_purchase_fields(purchase, data, partial=False)
    purchase.tin_id = _get_or_create_taxpayer(tin, data).id

    remark = clean_str(data.get("remark"))
    if remark:
        purchase.remarks = add_remark(None, remark, auth.profile)

    db.session.add(purchase)
    db.session.commit()

    log_notification(
        "purchase_created",
        f"Created purchase for {purchase.name} ({purchase.tin}) - {purchase.tax_month:%b %Y}",
        meta={"purchase_uuid": purchase.uuid, "gross_taxable": str(purchase.gross_taxable)},
    )
    return jsonify(purchase.to_dict()), 201


@purchases_bp.route("/purchases/<int:purchase_id>", methods=["PUT", "PATCH"])
@api_role_required()
@record_access_required(_load_purchase)
def update_purchase(purchase_id: int):
    purchase = _load_purchase(purchase_id)
    before = serialize_model(purchase)
    data = request_data()

    if "tin" in data:
        tin = normalize_digits(data.get("tin"))
        if not tin:
            abort(400, description="TIN is required.")
        purchase.tin = tin
        purchase.tin_id = _get_or_create_taxpayer(tin, {**purchase.to_dict(), **data}).id

    _apply_purchase_fields(purchase, data, partial=True)
    db.session.commit()

    log_notification(
        "purchase_updated",
        f"Updated purchase for {purchase.name} ({purchase.tin})",
        meta={"before": before, "after": serialize_model(purchase)},
    )
    return jsonify(purchase.to_dict())


@purchases_bp.route("/purchases/<int:purchase_id>", methods=["DELETE"])
@api_role_required()
@record_access_required(_load_purchase)
def delete_purchase(purchase_id: int):
    purchase = _load_purchase(purchase_id)
    purchase.is_deleted = True
    db.session.commit()

    log_notification(
        "purchase_deleted",
        f"Deleted purchase for {purchase.name} ({purchase.tin})",
        meta={"purchase_uuid": purchase.uuid},
    )
    return jsonify({"success": True})


# ---------------------------------------------------------------------
# Remarks
# ---------------------------------------------------------------------

@purchases_bp.route("/purchases/<int:purchase_id>/remarks", methods=["POST", "PUT", "DELETE"])
@api_role_required()
@record_access_required(_load_purchase)
def purchase_remarks(purchase_id: int):
    purchase = _load_purchase(purchase_id)
    auth = get_auth_session()
    data = request_data()

    target = data.get("target")
    if request.method in ("PUT", "DELETE") and not isinstance(target, dict):
        abort(400, description="target remark {uuid, date, remark} is required.")

    try:
        if request.method == "POST":
            purchase.remarks = add_remark(purchase.remarks, data.get("remark"), auth.profile)
        elif request.method == "PUT":
            purchase.remarks = edit_remark(purchase.remarks, target, data.get("remark"))
        else:
            purchase.remarks = delete_remark(purchase.remarks, target)
    except ValueError as exc:
        abort(400, description=str(exc))

    db.session.commit()
    log_notification(
        "purchase_remarks_updated",
        f"Remarks changed on purchase {purchase.name} ({purchase.tin})",
        meta={"purchase_uuid": purchase.uuid, "method": request.method},
    )
    return jsonify({"success": True, "remarks": parse_remarks(purchase.remarks)})


# ---------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------

@purchases_bp.route("/purchases/export/report")
@api_role_required()
def export_purchases_report():
    purchases = _filtered_purchases_query().all()
    auth = get_auth_session()
    wb = build_purchases_report_workbook(purchases, auth.profile)
    filename = export_filename("Purchases_Report")

    log_notification(
        "purchases_report_exported",
        f"Purchases report exported to Excel ({len(purchases)} records)",
        meta={"recordCount": len(purchases), "filename": filename},
    )
    return workbook_response(wb, filename)


@purchases_bp.route("/purchases/export", methods=["GET", "POST"])
@api_role_required()
def export_purchases():
    data = request_data() if request.method == "POST" else {}
    fields = data.get("fields") or [f for f in (request.args.get("fields") or "").split(",") if f]
    fields = fields or DEFAULT_PURCHASES_FIELDS

    purchases = _filtered_purchases_query().all()
    auth = get_auth_session()
    try:
        wb = build_custom_purchases_workbook(
            purchases,
            fields,
            profile=auth.profile,
            role=auth.role,
            areas=area_by_user_uuid(p.user_uuid for p in purchases),
        )
    except ValueError as exc:
        abort(400, description=str(exc))

    filename = f"purchases_export_{date.today():%Y-%m-%d}.xlsx"
    log_notification(
        "purchases_exported",
        f"Purchases data exported to Excel ({len(purchases)} records)",
        meta={"recordCount": len(purchases), "selectedFields": list(fields), "filename": filename, "role": auth.role},
    )
    return workbook_response(wb, filename)
