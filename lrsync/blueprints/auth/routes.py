"""
Authentication Routes

Provides:
- /auth/login        (GET: login hint, POST: sign in)
- /auth/logout
- /auth/session      (current user + profile)
- /auth/refresh      (re-fetch profile)
- /auth/csrf-token   (token for JSON clients, sent back as X-CSRFToken)

Rules:
- Only active accounts with an active profile may sign in.
- Sign-in outcome (success / failure) is written to the activity log.
- next= is honoured only for local paths.
"""

from flask import Blueprint, jsonify, request, url_for
from flask_wtf.csrf import generate_csrf

from ...security import home_endpoint_for, role_may_open, safe_next_url
from ...session import get_auth_session
from ...utils import request_data


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    """
    Authenticate a user.

    GET answers with the login requirement (and the sanitized next target) so
    a browser client can render its form; POST performs the sign-in.
    """
    auth = get_auth_session()

    if request.method == "GET":
        if auth.user is not None and auth.profile is not None:
            return jsonify(
                {
                    "authenticated": True,
                    "redirect": url_for(home_endpoint_for(auth.profile.role)),
                }
            )
        return jsonify({"authenticated": False, "next": safe_next_url(request.args.get("next"))})

    data = request_data()
    error = auth.sign_in(
        data.get("email", ""),
        data.get("password", ""),
        remember=bool(data.get("remember")),
    )
    if error:
        return jsonify({"error": error}), 401

    next_url = safe_next_url(data.get("next") or request.args.get("next"))
    if auth.profile is None:
        # Signed in, but no profile yet: protected pages answer 403 until one exists.
        return jsonify({"success": True, "profile": None, "redirect": next_url})

    role = auth.profile.role
    if next_url and not role_may_open(next_url, role):
        next_url = None

    return jsonify(
        {
            "success": True,
            "profile": auth.profile.to_dict(),
            "redirect": next_url or url_for(home_endpoint_for(role)),
        }
    )


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Log out the current user (no-op for anonymous requests)."""
    get_auth_session().sign_out()
    return jsonify({"success": True, "redirect": url_for("auth.login")})


# ============================================================
# SESSION STATE
# ============================================================

@auth_bp.route("/session")
def session_state():
    return jsonify(get_auth_session().to_dict())


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    auth = get_auth_session()
    if auth.user is None:
        return jsonify({"error": "Authentication required", "redirect": url_for("auth.login")}), 401
    auth.refresh_profile()
    return jsonify(auth.to_dict())


@auth_bp.route("/csrf-token")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})
