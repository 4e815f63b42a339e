"""
Activity tracker routes.

- GET /api/get-ip-location     caller's IP and resolved location
- GET /api/notifications       super_admin: search, action filter, date range, pagination
- GET /api/notifications/stats super_admin: totals per action and last 24 hours
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_

from ...audit import client_ip, lookup_location
from ...extensions import db
from ...models import ROLE_SUPER_ADMIN, Notification
from ...security import api_role_required
from ...utils import paginate, parse_date

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api")


@notifications_bp.route("/get-ip-location")
def get_ip_location():
    ip = client_ip()
    return jsonify({"ip_address": ip, "location": lookup_location(ip)})


@notifications_bp.route("/notifications")
@api_role_required(ROLE_SUPER_ADMIN)
def list_notifications():
    q = Notification.query

    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                func.coalesce(Notification.description, "").ilike(like),
                func.coalesce(Notification.user_name, "").ilike(like),
                func.coalesce(Notification.user_email, "").ilike(like),
                func.coalesce(Notification.ip_address, "").ilike(like),
            )
        )

    action = (request.args.get("action") or "").strip()
    if action and action != "all":
        q = q.filter(Notification.action == action)

    for arg, op in (("date_from", "ge"), ("date_to", "lt")):
        raw = request.args.get(arg)
        if not raw:
            continue
        day = parse_date(raw)
        if day is None:
            abort(400, description=f"{arg} must be YYYY-MM-DD.")
        start = datetime.combine(day, datetime.min.time())
        if op == "ge":
            q = q.filter(Notification.created_at >= start)
        else:
            q = q.filter(Notification.created_at < start + timedelta(days=1))

    q = q.order_by(Notification.created_at.desc(), Notification.id.desc())
    return jsonify(paginate(q))


@notifications_bp.route("/notifications/stats")
@api_role_required(ROLE_SUPER_ADMIN)
def notification_stats():
    by_action = dict(
        db.session.query(Notification.action, func.count(Notification.id))
        .group_by(Notification.action)
        .all()
    )
    since = datetime.utcnow() - timedelta(hours=24)
    return jsonify(
        {
            "total": sum(by_action.values()),
            "last_24_hours": Notification.query.filter(Notification.created_at >= since).count(),
            "unique_users": db.session.query(func.count(func.distinct(Notification.user_uuid))).scalar(),
            "by_action": by_action,
        }
    )
