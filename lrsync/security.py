"""
lrsync/security.py

Role-based access control helpers for the LR Sync back-office.

Key rules:
- UI is never trusted; all permission checks are server-side.
- super_admin: every section, every area.
- admin: their assigned area (users, sales, TIN library).
- secretary: their own records (sales, purchases, commission reports).

Decorators:
- role_required(*roles): page-style views.
    no session         -> redirect to login (?next=...)
    session, no profile -> 403 "Profile setup required"
    wrong role          -> redirect to the user's OWN home dashboard
- api_role_required(*roles): JSON endpoints (401/403 JSON with a redirect hint).

This module also provides a global safety net:
- inactive_profile_guard() blocks POST/PUT/PATCH/DELETE for profiles that are
  not active. Wire it via app.before_request in the app factory.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from flask import current_app, jsonify, redirect, request, url_for
from sqlalchemy import false, select
from werkzeug.exceptions import HTTPException

from .models import ROLE_ADMIN, ROLE_SECRETARY, ROLE_SUPER_ADMIN, UserProfile
from .session import get_auth_session

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

HOME_ENDPOINTS = {
    ROLE_SUPER_ADMIN: "dashboard.super_admin_home",
    ROLE_ADMIN: "dashboard.admin_home",
    ROLE_SECRETARY: "dashboard.secretary_home",
}


def home_endpoint_for(role: str | None) -> str:
    """Return the dashboard endpoint a role lands on (unknown roles go to login)."""
    return HOME_ENDPOINTS.get(role or "", "auth.login")


def safe_next_url(next_url: str | None) -> str | None:
    """
    Allow only relative redirects (prevents open redirect).

    Accept only:
    - "/path"
    Reject:
    - "http(s)://..."
    - "//evil.com"
    """
    if not next_url:
        return None
    next_url = next_url.strip()
    if not next_url.startswith("/") or next_url.startswith("//"):
        return None
    parts = urlsplit(next_url)
    if parts.scheme or parts.netloc:
        return None
    return next_url


def role_may_open(next_url: str, role: str | None) -> bool:
    """True when the view behind next_url admits the role (unknown paths do not)."""
    adapter = current_app.url_map.bind_to_environ(request.environ)
    try:
        endpoint, _ = adapter.match(urlsplit(next_url).path, method="GET")
    except HTTPException:
        return False
    view = current_app.view_functions.get(endpoint)
    allowed = getattr(view, "allowed_roles", None)
    return not allowed or role in allowed


def _login_redirect():
    return redirect(url_for("auth.login", next=request.full_path.rstrip("?")))


def role_required(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator factory for page-style views.

    Usage:
        @role_required("super_admin")
        def super_admin_home(): ...

    An empty role list admits any signed-in user that has a profile.
    """
    allowed = set(roles)

    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            auth = get_auth_session()
            if auth.user is None:
                return _login_redirect()

            if auth.profile is None:
                return jsonify({"error": "Profile setup required"}), 403

            if allowed and auth.profile.role not in allowed:
                # Never serve the requested page; send the user to their own home.
                return redirect(url_for(home_endpoint_for(auth.profile.role)))

            return view_func(*args, **kwargs)

        wrapper.allowed_roles = frozenset(allowed)
        return wrapper

    return decorator


def api_role_required(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator factory for JSON endpoints (no redirects, JSON errors instead)."""
    allowed = set(roles)

    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            auth = get_auth_session()
            if auth.user is None:
                return jsonify({"error": "Authentication required", "redirect": url_for("auth.login")}), 401

            if auth.profile is None:
                return jsonify({"error": "Profile setup required"}), 403

            if allowed and auth.profile.role not in allowed:
                return (
                    jsonify(
                        {
                            "error": "Forbidden",
                            "redirect": url_for(home_endpoint_for(auth.profile.role)),
                        }
                    ),
                    403,
                )

            return view_func(*args, **kwargs)

        wrapper.allowed_roles = frozenset(allowed)
        return wrapper

    return decorator


def inactive_profile_guard() -> Optional[tuple]:
    """
    Global guard: inactive or suspended profiles cannot mutate data.

    Allow-list for endpoints needed to leave or inspect the session:
    - auth.login
    - auth.logout
    - auth.refresh
    """
    if request.method not in MUTATING_METHODS:
        return None

    endpoint = (request.endpoint or "").strip()
    if endpoint in {"auth.login", "auth.logout", "auth.refresh"}:
        return None

    auth = get_auth_session()
    if auth.profile is None:
        return None

    if auth.profile.status != "active":
        return jsonify({"error": "Account is not active"}), 403

    return None


# ---------------------------------------------------------------------
# Area scoping (admins and secretaries see records of their own area)
# ---------------------------------------------------------------------
def can_access_area(area: str | None) -> bool:
    """super_admin sees every area; everyone else only their assigned one."""
    auth = get_auth_session()
    if auth.profile is None:
        return False
    if auth.profile.role == ROLE_SUPER_ADMIN:
        return True
    return bool(area) and area == auth.profile.assigned_area


def area_user_uuids_query(area: str | None):
    """SELECT of the profile uuids belonging to an area (usable in .in_())."""
    return select(UserProfile.uuid).where(UserProfile.assigned_area == area)


def scope_to_area(q, model):
    """Restrict a query on a model with `user_uuid` to the caller's area."""
    auth = get_auth_session()
    if auth.profile is None:
        return q.filter(false())
    if auth.profile.role == ROLE_SUPER_ADMIN:
        return q
    if not auth.profile.assigned_area:
        return q.filter(model.user_uuid == auth.profile.uuid)
    return q.filter(model.user_uuid.in_(area_user_uuids_query(auth.profile.assigned_area)))


def can_access_record(record) -> bool:
    """VIEW/EDIT permission for an area-owned record (sale, purchase, taxpayer listing)."""
    auth = get_auth_session()
    if auth.profile is None:
        return False
    if auth.profile.role == ROLE_SUPER_ADMIN:
        return True
    owner_uuid = getattr(record, "user_uuid", None)
    if owner_uuid and owner_uuid == auth.profile.uuid:
        return True
    owner = UserProfile.query.filter_by(uuid=owner_uuid).first() if owner_uuid else None
    return owner is not None and can_access_area(owner.assigned_area)


def record_access_required(load_record: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator factory: area permission for a single record.

    Usage:
        @record_access_required(lambda sale_id: db.get_or_404(Sale, sale_id))
        def update_sale(sale_id): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            record = load_record(**kwargs)
            if not can_access_record(record):
                return jsonify({"error": "Forbidden"}), 403
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def area_by_user_uuid(uuids) -> dict:
    """{profile uuid: assigned_area} for the given uuids."""
    uuids = {u for u in uuids if u}
    if not uuids:
        return {}
    rows = UserProfile.query.filter(UserProfile.uuid.in_(uuids)).all()
    return {p.uuid: p.assigned_area for p in rows}
