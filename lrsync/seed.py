"""
lrsync/seed.py

Seed master data.

Rules:
- Safe to run multiple times (idempotent).
- Default purchase categories are flagged is_default and cannot be edited or
  deleted through the API.
- The first super admin is created from the CLI; every other account is
  created by an administrator.
"""

from __future__ import annotations

from .extensions import db
from .models import ROLE_SUPER_ADMIN, PurchaseCategory, User, UserProfile


DEFAULT_PURCHASE_CATEGORIES = [
    "Office Supplies",
    "Utilities",
    "Rent",
    "Transportation",
    "Meals & Representation",
    "Repairs & Maintenance",
    "Professional Fees",
    "Communication",
    "Others",
]


def seed_purchase_categories() -> int:
    """Insert missing default categories (re-activating soft-deleted ones). Returns inserts."""
    created = 0
    for name in DEFAULT_PURCHASE_CATEGORIES:
        category = PurchaseCategory.query.filter_by(category=name).first()
        if category is None:
            db.session.add(PurchaseCategory(category=name, is_default=True, user_full_name="System"))
            created += 1
            continue
        category.is_default = True
        category.is_deleted = False

    db.session.commit()
    return created


def create_super_admin(
    email: str,
    password: str,
    first_name: str = "Super",
    last_name: str = "Admin",
) -> UserProfile:
    """Create (or promote) the account + profile for a super admin."""
    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(email=email, is_active=True)
        db.session.add(user)
    user.set_password(password)
    db.session.flush()

    profile = UserProfile.query.filter_by(auth_user_id=user.id).first()
    if profile is None:
        profile = UserProfile(auth_user_id=user.id, email=email)
        db.session.add(profile)

    profile.first_name = first_name
    profile.last_name = last_name
    profile.full_name = f"{first_name} {last_name}".strip()
    profile.role = ROLE_SUPER_ADMIN
    profile.status = "active"

    db.session.commit()
    return profile
