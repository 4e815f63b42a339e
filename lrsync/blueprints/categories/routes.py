"""
Purchase categories routes (super_admin manages, every signed-in role reads).

IMPORTANT:
- Default categories (seeded via `flask seed-categories`) cannot be renamed
  or deleted.
- Delete is a soft delete; a deleted category keeps its name reserved
  (unique constraint), so re-adding it restores the row instead.
"""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from ...audit import log_notification
from ...extensions import db
from ...models import ROLE_SUPER_ADMIN, PurchaseCategory
from ...security import api_role_required
from ...session import get_auth_session
from ...utils import commit_or_conflict, request_data, required_str

categories_bp = Blueprint("categories", __name__, url_prefix="/api")

DUPLICATE_MESSAGE = "A category with this name already exists."


def _active_category_or_404(category_id: int) -> PurchaseCategory:
    category = db.get_or_404(PurchaseCategory, category_id)
    if category.is_deleted:
        abort(404, description="Category not found.")
    return category


@categories_bp.route("/categories")
@api_role_required()
def list_categories():
    q = PurchaseCategory.query.filter(PurchaseCategory.is_deleted.is_(False))
    if request.args.get("include_deleted") == "1" and get_auth_session().role == ROLE_SUPER_ADMIN:
        q = PurchaseCategory.query
    rows = q.order_by(PurchaseCategory.is_default.desc(), PurchaseCategory.category.asc()).all()
    return jsonify({"items": [c.to_dict() for c in rows]})


@categories_bp.route("/categories", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN)
def add_category():
    profile = get_auth_session().profile
    name = required_str(request_data(), "category", "Category name")

    existing = PurchaseCategory.query.filter(PurchaseCategory.category == name).first()
    if existing is not None and not existing.is_deleted:
        abort(409, description=DUPLICATE_MESSAGE)

    if existing is not None:
        existing.is_deleted = False
        existing.user_uuid = profile.uuid
        existing.user_full_name = profile.full_name
        category = existing
    else:
        category = PurchaseCategory(
            category=name,
            is_default=False,
            user_uuid=profile.uuid,
            user_full_name=profile.full_name,
        )
        db.session.add(category)

    commit_or_conflict(DUPLICATE_MESSAGE)
    log_notification("category_added", f"Added purchase category '{name}'", meta={"category_id": category.id})
    return jsonify(category.to_dict()), 201


@categories_bp.route("/categories/<int:category_id>", methods=["PUT", "PATCH"])
@api_role_required(ROLE_SUPER_ADMIN)
def rename_category(category_id: int):
    category = _active_category_or_404(category_id)
    if category.is_default:
        abort(403, description="Default categories cannot be edited.")

    name = required_str(request_data(), "category", "Category name")
    old_name = category.category
    if name == old_name:
        return jsonify(category.to_dict())

    category.category = name
    commit_or_conflict(DUPLICATE_MESSAGE)

    log_notification(
        "category_updated",
        f"Renamed purchase category '{old_name}' to '{name}'",
        meta={"category_id": category.id, "before": old_name, "after": name},
    )
    return jsonify(category.to_dict())


@categories_bp.route("/categories/<int:category_id>", methods=["DELETE"])
@api_role_required(ROLE_SUPER_ADMIN)
def delete_category(category_id: int):
    category = _active_category_or_404(category_id)
    if category.is_default:
        abort(403, description="Default categories cannot be deleted.")

    category.is_deleted = True
    db.session.commit()

    log_notification(
        "category_deleted",
        f"Deleted purchase category '{category.category}'",
        meta={"category_id": category.id},
    )
    return jsonify({"success": True})
