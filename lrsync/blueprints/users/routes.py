"""
User management.

Rules enforced:
- Every login account (User) has exactly one UserProfile (1-to-1).
- super_admin manages every profile (create, edit, role, area, status).
- admin lists users of their own area and may add secretaries to it.
- Profiles are never hard-deleted; they are deactivated through status.
- UI never trusted: we validate server-side.

Self-service:
- /api/profile lets every signed-in user read and edit their own names and password.

Audit:
- user_created / user_updated / user_status_changed / profile_updated logged
"""

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_

from ...audit import log_notification, serialize_model
from ...extensions import db
from ...models import PROFILE_STATUSES, ROLE_ADMIN, ROLE_SECRETARY, ROLE_SUPER_ADMIN, ROLES, User, UserProfile
from ...security import api_role_required, can_access_area
from ...session import get_auth_session
from ...utils import clean_str, commit_or_conflict, paginate, request_data, required_str


users_bp = Blueprint("users", __name__, url_prefix="/api")


def _full_name(first: str | None, last: str | None) -> str | None:
    return " ".join(part for part in (first, last) if part) or None


def _load_profile(profile_id: int) -> UserProfile:
    profile = db.get_or_404(UserProfile, profile_id)
    if not can_access_area(profile.assigned_area):
        abort(403, description="Forbidden")
    return profile


# ---------------------------------------------------------------------
# LIST USERS
# ---------------------------------------------------------------------

@users_bp.route("/users")
@api_role_required(ROLE_SUPER_ADMIN, ROLE_ADMIN)
def list_users():
    """super_admin: every profile. admin: profiles of their area."""
    auth = get_auth_session()
    q = UserProfile.query

    if auth.role == ROLE_ADMIN:
        q = q.filter(
            UserProfile.assigned_area == auth.profile.assigned_area,
            UserProfile.role.in_([ROLE_SECRETARY, ROLE_ADMIN]),
        )
    else:
        area = (request.args.get("area") or "").strip()
        if area:
            q = q.filter(UserProfile.assigned_area == area)

    role = (request.args.get("role") or "").strip()
    if role:
        q = q.filter(UserProfile.role == role)

    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(UserProfile.status == status)

    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                func.coalesce(UserProfile.full_name, "").ilike(like),
                func.coalesce(UserProfile.email, "").ilike(like),
            )
        )

    return jsonify(paginate(q.order_by(UserProfile.created_at.desc())))


# ---------------------------------------------------------------------
# CREATE USER
# ---------------------------------------------------------------------

@users_bp.route("/users", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_ADMIN)
def create_user():
    auth = get_auth_session()
    data = request_data()

    email = required_str(data, "email", "Email").lower()
    password = data.get("password") or ""
    if len(password) < 6:
        abort(400, description="Password must be at least 6 characters.")

    first_name = clean_str(data.get("first_name"))
    last_name = clean_str(data.get("last_name"))
    role = clean_str(data.get("role")) or ROLE_SECRETARY
    assigned_area = clean_str(data.get("assigned_area"))
    status = clean_str(data.get("status")) or "active"

    if role not in ROLES:
        abort(400, description="Invalid role.")
    if status not in PROFILE_STATUSES:
        abort(400, description="Invalid status.")

    if auth.role == ROLE_ADMIN:
        # Admins only add secretaries to their own area.
        if role != ROLE_SECRETARY:
            abort(403, description="Admins can only create secretaries.")
        assigned_area = auth.profile.assigned_area

    if User.query.filter(func.lower(User.email) == email).first():
        abort(409, description="A user with this email already exists.")

    user = User(email=email, is_active=status == "active")
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    profile = UserProfile(
        auth_user_id=user.id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        full_name=_full_name(first_name, last_name),
        role=role,
        assigned_area=assigned_area,
        status=status,
    )
    db.session.add(profile)
    commit_or_conflict("A user with this email already exists.")

    log_notification(
        "user_created",
        f"Created user {profile.full_name or email} ({role})",
        meta={"after": serialize_model(profile)},
    )
    return jsonify(profile.to_dict()), 201


# ---------------------------------------------------------------------
# VIEW / EDIT USER
# ---------------------------------------------------------------------

@users_bp.route("/users/<int:profile_id>")
@api_role_required(ROLE_SUPER_ADMIN, ROLE_ADMIN)
def get_user(profile_id: int):
    return jsonify(_load_profile(profile_id).to_dict())


@users_bp.route("/users/<int:profile_id>", methods=["PUT", "PATCH"])
@api_role_required(ROLE_SUPER_ADMIN)
def update_user(profile_id: int):
    profile = db.get_or_404(UserProfile, profile_id)
    data = request_data()
    before = serialize_model(profile)

    if "first_name" in data:
        profile.first_name = clean_str(data.get("first_name"))
    if "last_name" in data:
        profile.last_name = clean_str(data.get("last_name"))
    if "first_name" in data or "last_name" in data:
        profile.full_name = _full_name(profile.first_name, profile.last_name)

    if "role" in data:
        role = clean_str(data.get("role"))
        if role not in ROLES:
            abort(400, description="Invalid role.")
        profile.role = role

    if "assigned_area" in data:
        profile.assigned_area = clean_str(data.get("assigned_area"))

    if "status" in data:
        status = clean_str(data.get("status"))
        if status not in PROFILE_STATUSES:
            abort(400, description="Invalid status.")
        profile.status = status
        if profile.user is not None:
            profile.user.is_active = status == "active"

    if "email" in data:
        email = required_str(data, "email", "Email").lower()
        profile.email = email
        if profile.user is not None:
            profile.user.email = email

    if data.get("password"):
        if profile.user is None:
            abort(400, description="Profile has no login account.")
        profile.user.set_password(data["password"])

    commit_or_conflict("A user with this email already exists.")

    log_notification(
        "user_updated",
        f"Updated user {profile.full_name or profile.email}",
        meta={"before": before, "after": serialize_model(profile)},
    )
    return jsonify(profile.to_dict())


@users_bp.route("/users/<int:profile_id>/status", methods=["PUT", "PATCH"])
@api_role_required(ROLE_SUPER_ADMIN)
def update_user_status(profile_id: int):
    profile = db.get_or_404(UserProfile, profile_id)
    status = clean_str(request_data().get("status"))
    if status not in PROFILE_STATUSES:
        abort(400, description="Invalid status.")

    auth = get_auth_session()
    if profile.id == auth.profile.id and status != "active":
        abort(400, description="You cannot deactivate your own account.")

    old_status = profile.status
    profile.status = status
    if profile.user is not None:
        profile.user.is_active = status == "active"
    db.session.commit()

    log_notification(
        "user_status_changed",
        f"Changed status of {profile.full_name or profile.email} from {old_status} to {status}",
        meta={"profile_uuid": profile.uuid, "from": old_status, "to": status},
    )
    return jsonify(profile.to_dict())


# ---------------------------------------------------------------------
# OWN PROFILE
# ---------------------------------------------------------------------

@users_bp.route("/profile")
@api_role_required()
def get_own_profile():
    return jsonify(get_auth_session().profile.to_dict())


@users_bp.route("/profile", methods=["PUT", "PATCH"])
@api_role_required()
def update_own_profile():
    auth = get_auth_session()
    profile = auth.profile
    data = request_data()

    if "first_name" in data:
        profile.first_name = clean_str(data.get("first_name"))
    if "last_name" in data:
        profile.last_name = clean_str(data.get("last_name"))
    profile.full_name = _full_name(profile.first_name, profile.last_name) or profile.full_name

    new_password = data.get("new_password")
    if new_password:
        if not auth.user.check_password(data.get("current_password") or ""):
            abort(400, description="Current password is incorrect.")
        if len(new_password) < 6:
            abort(400, description="Password must be at least 6 characters.")
        auth.user.set_password(new_password)

    db.session.commit()
    auth.refresh_profile()

    log_notification("profile_updated", f"{auth.profile.display_name} updated their profile")
    return jsonify(auth.profile.to_dict())
