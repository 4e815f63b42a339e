"""
lrsync/audit.py

Best-effort activity ("notification") logging.

Goals:
- Capture WHO did WHAT, from WHERE (IP + coarse location), with a free-form
  description and optional JSON meta.
- Store name/email snapshots so entries stay readable after profile edits.

IMPORTANT:
- log_notification() COMMITS its own entry. Call it AFTER the primary
  operation has been committed; a failed audit write is rolled back, logged
  and swallowed, so it never changes the caller's outcome.
- Entries are written at most once; there is no retry and no queue.
- The geolocation lookup is bounded by IP_GEOLOCATION_TIMEOUT and is not cached.

SECURITY NOTE:
- The client IP is the first X-Forwarded-For hop when present, else
  request.remote_addr. In production behind a reverse proxy, make sure the
  proxy overwrites X-Forwarded-For instead of appending untrusted values.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from flask import current_app, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import Notification, UserProfile

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown"


def _safe_str(value: Any) -> Optional[str]:
    """Stable string form for JSON snapshots (None stays None)."""
    if value is None:
        return None
    try:
        return str(value)
    except Exception:
        return repr(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """
    Convert a SQLAlchemy model instance to a dict snapshot based on table columns.

    Used for before/after meta on update and delete entries.
    """
    data: Dict[str, Optional[str]] = {}
    for column in instance.__table__.columns:
        data[column.name] = _safe_str(getattr(instance, column.name))
    return data


# ---------------------------------------------------------------------
# Client address / location
# ---------------------------------------------------------------------
def client_ip() -> Optional[str]:
    if not has_request_context():
        return None
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.remote_addr


def format_location(geo: Dict[str, Any]) -> str:
    """'city, country' when both are known, else the country, else Unknown."""
    city = (geo or {}).get("city")
    country = (geo or {}).get("country_name")
    if city and country:
        return f"{city}, {country}"
    return country or UNKNOWN_LOCATION


def lookup_location(ip: Optional[str]) -> str:
    """
    Resolve a coarse location for an IP through the configured geolocation API.

    Any network or decoding error yields "Unknown".
    """
    base_url = (current_app.config.get("IP_GEOLOCATION_URL") or "").rstrip("/")
    if not base_url or not ip:
        return UNKNOWN_LOCATION

    timeout = current_app.config.get("IP_GEOLOCATION_TIMEOUT", 3)
    try:
        response = requests.get(f"{base_url}/{ip}/json/", timeout=timeout)
        response.raise_for_status()
        return format_location(response.json())
    except (requests.RequestException, ValueError) as exc:
        logger.warning("IP geolocation failed for %s: %s", ip, exc)
        return UNKNOWN_LOCATION


# ---------------------------------------------------------------------
# Notification writer
# ---------------------------------------------------------------------
def log_notification(
    action: str,
    description: str,
    meta: Optional[Dict[str, Any]] = None,
    profile: Optional[UserProfile] = None,
    *,
    user_email: Optional[str] = None,
) -> Optional[Notification]:
    """
    Insert and commit one Notification row. Returns the row, or None on failure.

    Parameters:
        action: short machine-readable verb, e.g. "sale_created"
        description: human readable sentence for the activity tracker
        meta: optional JSON-serializable details
        profile: acting profile; defaults to the request's signed-in profile
        user_email: overrides the email snapshot (used for failed logins)
    """
    try:
        if profile is None and has_request_context():
            # local import: session imports this module lazily as well
            from .session import get_auth_session

            profile = get_auth_session().profile

        ip = client_ip()
        entry = Notification(
            action=str(action),
            description=description,
            user_uuid=profile.uuid if profile else None,
            user_name=profile.full_name if profile else None,
            user_email=user_email or (profile.email if profile else None),
            ip_address=ip,
            location=lookup_location(ip),
            user_agent=(request.headers.get("User-Agent", "")[:512] or None) if has_request_context() else None,
            meta=meta,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Error logging notification (%s)", action)
        return None
