"""
Dashboard routes (one home per role) and role-filtered navigation.

- /dashboard/super-admin : users, areas, sales and TIN library counts (all areas)
- /dashboard/admin       : same counts restricted to the admin's assigned area
- /dashboard/secretary   : the secretary's own sales, purchases and reports

SECURITY NOTE:
- Navigation only filters visibility. Every route enforces its own roles.
"""

from __future__ import annotations

from flask import Blueprint, jsonify
from sqlalchemy import func

from ... import visible_nav_sections
from ...extensions import db
from ...models import (
    ROLE_ADMIN,
    ROLE_SECRETARY,
    ROLE_SUPER_ADMIN,
    CommissionReport,
    Purchase,
    Sale,
    TaxpayerListing,
    UserProfile,
)
from ...security import api_role_required, area_user_uuids_query, role_required
from ...session import get_auth_session

dashboard_bp = Blueprint("dashboard", __name__)


def _home_payload(title: str, stats: dict) -> dict:
    auth = get_auth_session()
    return {
        "title": title,
        "profile": auth.profile.to_dict(),
        "stats": stats,
        "navigation": visible_nav_sections(auth.role),
    }


@dashboard_bp.route("/dashboard/super-admin")
@role_required(ROLE_SUPER_ADMIN)
def super_admin_home():
    stats = {
        "total_users": UserProfile.query.count(),
        "active_users": UserProfile.query.filter_by(status="active").count(),
        "areas": db.session.query(func.count(func.distinct(UserProfile.assigned_area)))
        .filter(UserProfile.assigned_area.isnot(None))
        .scalar(),
        "sales": Sale.query.filter(Sale.is_deleted.is_(False)).count(),
        "taxpayers": TaxpayerListing.query.count(),
    }
    return jsonify(_home_payload("Super Admin Dashboard", stats))


@dashboard_bp.route("/dashboard/admin")
@role_required(ROLE_ADMIN)
def admin_home():
    area = get_auth_session().profile.assigned_area
    area_users = UserProfile.query.filter(UserProfile.assigned_area == area)

    stats = {
        "assigned_area": area,
        "active_users": area_users.filter(UserProfile.status == "active").count(),
        "roles": db.session.query(func.count(func.distinct(UserProfile.role)))
        .filter(UserProfile.assigned_area == area)
        .scalar(),
        "sales": Sale.query.filter(
            Sale.is_deleted.is_(False),
            Sale.user_uuid.in_(area_user_uuids_query(area)),
        ).count(),
        "taxpayers": TaxpayerListing.query.filter(
            TaxpayerListing.user_uuid.in_(area_user_uuids_query(area))
        ).count(),
    }
    return jsonify(_home_payload("Admin Dashboard", stats))


@dashboard_bp.route("/dashboard/secretary")
@role_required(ROLE_SECRETARY)
def secretary_home():
    profile = get_auth_session().profile
    stats = {
        "sales": Sale.query.filter(Sale.is_deleted.is_(False), Sale.user_uuid == profile.uuid).count(),
        "purchases": Purchase.query.filter(
            Purchase.is_deleted.is_(False), Purchase.user_uuid == profile.uuid
        ).count(),
        "commission_reports": CommissionReport.query.filter(
            CommissionReport.deleted_at.is_(None), CommissionReport.created_by == profile.id
        ).count(),
    }
    return jsonify(_home_payload("Secretary Dashboard", stats))


@dashboard_bp.route("/api/navigation")
@api_role_required()
def navigation():
    return jsonify({"sections": visible_nav_sections(get_auth_session().role)})
