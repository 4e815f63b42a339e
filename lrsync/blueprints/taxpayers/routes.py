"""
TIN library routes.

Includes:
- list / search / paginate taxpayer listings (area scoped)
- create / update / delete
- suggestions by TIN prefix or registered name (used by the sales and purchases forms)

IMPORTANT:
- TINs are stored as digits only.
- (tin, type) is unique in the schema; the pre-check below only gives a
  friendlier message, the constraint decides (409).
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_

from ...audit import log_notification, serialize_model
from ...extensions import db
from ...models import TAXPAYER_TYPES, TaxpayerListing
from ...security import api_role_required, record_access_required, scope_to_area
from ...session import get_auth_session
from ...utils import clean_str, commit_or_conflict, normalize_digits, paginate, request_data

taxpayers_bp = Blueprint("taxpayers", __name__, url_prefix="/api")

DUPLICATE_MESSAGE = "A taxpayer with this TIN and type already exists."


def _load_taxpayer(taxpayer_id: int, **_: object) -> TaxpayerListing:
    return db.get_or_404(TaxpayerListing, taxpayer_id)


def _validated_fields(data: dict, partial: bool = False) -> dict:
    fields = {}

    if not partial or "tin" in data:
        tin = normalize_digits(data.get("tin"))
        if not tin:
            abort(400, description="TIN is required.")
        fields["tin"] = tin

    if not partial or "type" in data:
        tp_type = clean_str(data.get("type")) or "sales"
        if tp_type not in TAXPAYER_TYPES:
            abort(400, description="Type must be 'sales' or 'purchases'.")
        fields["type"] = tp_type

    if not partial or "registered_name" in data:
        name = clean_str(data.get("registered_name"))
        if not name:
            abort(400, description="Registered name is required.")
        fields["registered_name"] = name

    for key in ("substreet_street_brgy", "district_city_zip"):
        if not partial or key in data:
            fields[key] = clean_str(data.get(key))

    return fields


def _duplicate_exists(tin: str, tp_type: str, exclude_id: int | None = None) -> bool:
    q = TaxpayerListing.query.filter_by(tin=tin, type=tp_type)
    if exclude_id is not None:
        q = q.filter(TaxpayerListing.id != exclude_id)
    return db.session.query(q.exists()).scalar()


# ---------------------------------------------------------------------
# List / suggestions
# ---------------------------------------------------------------------

@taxpayers_bp.route("/taxpayers")
@api_role_required()
def list_taxpayers():
    q = scope_to_area(TaxpayerListing.query, TaxpayerListing)

    tp_type = (request.args.get("type") or "").strip()
    if tp_type:
        q = q.filter(TaxpayerListing.type == tp_type)

    search = (request.args.get("search") or "").strip()
    if search:
        digits = normalize_digits(search)
        conditions = [func.coalesce(TaxpayerListing.registered_name, "").ilike(f"%{search}%")]
        if digits:
            conditions.append(TaxpayerListing.tin.ilike(f"%{digits}%"))
        q = q.filter(or_(*conditions))

    return jsonify(paginate(q.order_by(TaxpayerListing.created_at.desc(), TaxpayerListing.id.desc())))


@taxpayers_bp.route("/taxpayers/suggestions")
@api_role_required()
def taxpayer_suggestions():
    """Up to 10 listings whose TIN starts with, or whose name contains, ?q=."""
    term = (request.args.get("q") or "").strip()
    if not term:
        return jsonify({"items": []})

    q = TaxpayerListing.query
    tp_type = (request.args.get("type") or "").strip()
    if tp_type:
        q = q.filter(TaxpayerListing.type == tp_type)

    digits = normalize_digits(term)
    conditions = [func.coalesce(TaxpayerListing.registered_name, "").ilike(f"%{term}%")]
    if digits:
        conditions.append(TaxpayerListing.tin.like(f"{digits}%"))

    rows = q.filter(or_(*conditions)).order_by(TaxpayerListing.registered_name.asc()).limit(10).all()
    return jsonify({"items": [row.to_dict() for row in rows]})


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------

@taxpayers_bp.route("/taxpayers", methods=["POST"])
@api_role_required()
def create_taxpayer():
    auth = get_auth_session()
    fields = _validated_fields(request_data())

    if _duplicate_exists(fields["tin"], fields["type"]):
        abort(409, description=DUPLICATE_MESSAGE)

    taxpayer = TaxpayerListing(
        **fields,
        date_added=date.today(),
        user_uuid=auth.profile.uuid,
        user_full_name=auth.profile.full_name,
    )
    db.session.add(taxpayer)
    commit_or_conflict(DUPLICATE_MESSAGE)

    log_notification(
        "taxpayer_created",
        f"Added {taxpayer.registered_name} ({taxpayer.tin}) to the TIN library",
        meta={"after": serialize_model(taxpayer)},
    )
    return jsonify(taxpayer.to_dict()), 201


@taxpayers_bp.route("/taxpayers/<int:taxpayer_id>", methods=["PUT", "PATCH"])
@api_role_required()
@record_access_required(_load_taxpayer)
def update_taxpayer(taxpayer_id: int):
    taxpayer = _load_taxpayer(taxpayer_id)
    before = serialize_model(taxpayer)
    fields = _validated_fields(request_data(), partial=True)

    tin = fields.get("tin", taxpayer.tin)
    tp_type = fields.get("type", taxpayer.type)
    if _duplicate_exists(tin, tp_type, exclude_id=taxpayer.id):
        abort(409, description=DUPLICATE_MESSAGE)

    for key, value in fields.items():
        setattr(taxpayer, key, value)
    commit_or_conflict(DUPLICATE_MESSAGE)

    log_notification(
        "taxpayer_updated",
        f"Updated TIN library entry {taxpayer.registered_name} ({taxpayer.tin})",
        meta={"before": before, "after": serialize_model(taxpayer)},
    )
    return jsonify(taxpayer.to_dict())


@taxpayers_bp.route("/taxpayers/<int:taxpayer_id>", methods=["DELETE"])
@api_role_required()
@record_access_required(_load_taxpayer)
def delete_taxpayer(taxpayer_id: int):
    taxpayer = _load_taxpayer(taxpayer_id)
    before = serialize_model(taxpayer)
    db.session.delete(taxpayer)
    db.session.commit()

    log_notification(
        "taxpayer_deleted",
        f"Deleted TIN library entry {before['registered_name']} ({before['tin']})",
        meta={"before": before},
    )
    return jsonify({"success": True})
