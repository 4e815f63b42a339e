"""
Utility functions shared across the blueprints. This includes:
- request payload access (JSON body or form data)
- parsing helpers for ints, decimals, dates and TIN digits
- paginate(): page/per_page handling with clamped limits
- commit_or_conflict(): commit, mapping unique-constraint violations to 409
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from flask import abort, current_app, request
from sqlalchemy.exc import IntegrityError

from .extensions import db


def request_data() -> Dict[str, Any]:
    """JSON body when sent, otherwise form fields."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()


def parse_optional_int(value) -> int | None:
    """Parse optional int from form/query/JSON."""
    if value is None:
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_decimal(value) -> Decimal | None:
    """Parse decimal from user input (accepts thousands separators)."""
    if value is None:
        return None
    raw = str(value).strip().replace(",", "")
    if raw == "":
        return None
    try:
        return Decimal(raw)
    except (InvalidOperation, ValueError):
        return None


def parse_date(value) -> date | None:
    """
    Accept 'YYYY-MM-DD', 'YYYY-MM' (first day of month) or an ISO timestamp.
    Returns None for empty or invalid input.
    """
    if value is None:
        return None
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if raw == "":
        return None
    for fmt in ("%Y-%m-%d", "%Y-%m"):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def normalize_digits(value) -> str:
    """Keep only digits (TIN input may contain dashes or spaces)."""
    if not value:
        return ""
    return "".join(ch for ch in str(value) if ch.isdigit())


def clean_str(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def required_str(data: Dict[str, Any], key: str, label: str | None = None) -> str:
    value = clean_str(data.get(key))
    if not value:
        abort(400, description=f"{label or key} is required.")
    return value


def paginate(q, serializer=lambda row: row.to_dict()) -> Dict[str, Any]:
    """Apply ?page=&per_page= (clamped to MAX_PAGE_SIZE) and return a JSON-ready dict."""
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 10)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    per_page = request.args.get("per_page", default_size, type=int) or default_size
    per_page = min(max(per_page, 1), max_size)

    pagination = q.paginate(page=page, per_page=per_page, error_out=False)
    return {
        "items": [serializer(row) for row in pagination.items],
        "total": pagination.total,
        "page": pagination.page,
        "per_page": pagination.per_page,
        "pages": pagination.pages,
    }


def commit_or_conflict(message: str = "Record already exists.") -> None:
    """
    Commit the session. A unique-constraint violation is rolled back and
    answered with 409; the database constraint is the final arbiter.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        abort(409, description=message)
