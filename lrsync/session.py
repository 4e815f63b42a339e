"""
lrsync/session.py

Per-request authentication state.

AuthSession wraps Flask-Login's current_user together with the matching
UserProfile row. One instance lives on flask.g for the duration of a request;
there is no process-wide auth state.

IMPORTANT:
- A profile lookup failure (database error) degrades to "no profile". It is
  logged and never raised into the view; the access gate then answers with
  "Profile setup required".
- sign_in() returns an error message or None. It never raises for bad
  credentials.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from flask import g
from flask_login import current_user, login_user, logout_user
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import User, UserProfile

logger = logging.getLogger(__name__)


class AuthSession:
    """Current user + profile for one request."""

    def __init__(self) -> None:
        self.user: Optional[User] = None
        self.profile: Optional[UserProfile] = None
        self.loaded = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def _fetch_profile(self, user: User) -> Optional[UserProfile]:
        try:
            return UserProfile.query.filter_by(auth_user_id=user.id).first()
        except SQLAlchemyError:
            logger.exception("Profile lookup failed for user id=%s", user.id)
            db.session.rollback()
            return None

    def load(self) -> "AuthSession":
        """Resolve the logged-in user and its profile (once per request)."""
        if self.loaded:
            return self

        if current_user.is_authenticated:
            self.user = current_user._get_current_object()
            self.profile = self._fetch_profile(self.user)
        else:
            self.user = None
            self.profile = None

        self.loaded = True
        return self

    def refresh_profile(self) -> Optional[UserProfile]:
        """Re-fetch the profile row (e.g. after an edit of the own profile)."""
        if self.user is None:
            self.profile = None
            return None
        db.session.expire_all()
        self.profile = self._fetch_profile(self.user)
        return self.profile

    # ------------------------------------------------------------------
    # Sign in / out
    # ------------------------------------------------------------------
    def sign_in(self, email: str, password: str, remember: bool = False) -> Optional[str]:
        """Authenticate and start a session. Returns an error string, or None on success."""
        # audit imports this module to resolve the acting profile
        from .audit import log_notification

        email = (email or "").strip().lower()
        if not email or not password:
            return "Email and password are required."

        user = User.query.filter(func.lower(User.email) == email).first()
        if user is None or not user.check_password(password):
            log_notification(
                "login_failed",
                f"Failed login attempt for {email}",
                meta={"email": email},
                user_email=email,
            )
            return "Invalid email or password."

        profile = self._fetch_profile(user)
        if not user.is_active or (profile is not None and profile.status != "active"):
            log_notification(
                "login_failed",
                f"Login blocked for inactive account {email}",
                meta={"email": email, "reason": "inactive"},
                profile=profile,
                user_email=email,
            )
            return "Account is not active."

        login_user(user, remember=remember)
        self.user = user
        self.profile = profile
        self.loaded = True

        if profile is not None:
            profile.last_login_at = datetime.utcnow()
            try:
                db.session.commit()
            except SQLAlchemyError:
                logger.exception("Could not stamp last_login_at for %s", email)
                db.session.rollback()

        log_notification(
            "login_success",
            f"{profile.display_name if profile else email} logged in",
            meta={"email": email},
            profile=profile,
            user_email=email,
        )
        return None

    def sign_out(self) -> None:
        profile = self.profile
        if profile is not None:
            from .audit import log_notification

            log_notification("logout", f"{profile.display_name} logged out", profile=profile)
        logout_user()
        self.user = None
        self.profile = None
        self.loaded = True

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------
    @property
    def role(self) -> Optional[str]:
        return self.profile.role if self.profile else None

    def to_dict(self) -> dict:
        return {
            "authenticated": self.user is not None,
            "user": {"id": self.user.id, "email": self.user.email} if self.user else None,
            "profile": self.profile.to_dict() if self.profile else None,
        }


def get_auth_session() -> AuthSession:
    """Return the request's AuthSession, creating and loading it on first use."""
    auth = g.get("auth_session")
    if auth is None:
        auth = AuthSession()
        g.auth_session = auth
    return auth.load()
