"""
LR Sync – Domain Models

Covers:
- Accounts and profiles (User 1-1 UserProfile, role + assigned area)
- TIN library (TaxpayerListing, unique per TIN and type)
- Sales / Purchases records with attachment URL lists and JSON remarks
- Purchase categories (default vs custom, soft-deleted)
- Commission reports and their per-agent breakdown
- Notification (append-only audit trail)

IMPORTANT:
- Sales, purchases, categories and commission reports are soft-deleted.
- Uniqueness (TIN per type, category name, report number) lives in the schema;
  routes map IntegrityError to a 409 "already exists" response.
"""

from __future__ import annotations

import json
import uuid as uuid_lib
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db


ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_SECRETARY = "secretary"
ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_SECRETARY)

PROFILE_STATUSES = ("active", "inactive", "suspended")

TAXPAYER_TYPES = ("sales", "purchases")
TAX_TYPES = ("vat", "non-vat")

REPORT_STATUSES = (
    "new",
    "ongoing verification",
    "for approval",
    "approved",
    "cancelled",
    "for testing",
)

CALC_NONVAT_WITH_INVOICE = "nonvat with invoice"
CALC_NONVAT_WITHOUT_INVOICE = "nonvat without invoice"
CALC_VAT_WITH_INVOICE = "vat with invoice"
CALC_VAT_DEDUCTION = "vat deduction"
CALCULATION_TYPES = (
    CALC_NONVAT_WITH_INVOICE,
    CALC_NONVAT_WITHOUT_INVOICE,
    CALC_VAT_WITH_INVOICE,
    CALC_VAT_DEDUCTION,
)
INVOICED_CALCULATION_TYPES = (CALC_NONVAT_WITH_INVOICE, CALC_VAT_WITH_INVOICE)
GROSS_CALCULATION_TYPES = (CALC_NONVAT_WITHOUT_INVOICE, CALC_VAT_DEDUCTION)

SALE_ATTACHMENT_FIELDS = ("cheque", "voucher", "invoice", "doc_2307", "deposit_slip")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _new_uuid() -> str:
    return str(uuid_lib.uuid4())


def _to_decimal(value) -> Decimal:
    """Convert Numeric/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value))


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _iso(value) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_json_list(raw) -> list:
    """JSON text (or an already decoded list) -> list. Anything else -> []."""
    if isinstance(raw, list):
        return raw
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


def _num(value) -> float | None:
    """Numeric column -> JSON number."""
    if value is None:
        return None
    return float(value)


def _money_or_none(x):
    return None if x is None else _money(x)


def _normalize_calc(calculation_type) -> str:
    return (calculation_type or CALC_NONVAT_WITH_INVOICE).strip().lower()


def _settle(amount: Decimal, calc: str, ewt_rate):
    """amount -> (vat, ewt, net) for one calculation type."""
    ewt_pct = _to_decimal(ewt_rate) if ewt_rate not in (None, "") else Decimal("5")
    if calc == CALC_NONVAT_WITH_INVOICE:
        ewt = amount * ewt_pct / Decimal("100")
        return None, ewt, amount - ewt
    if calc == CALC_VAT_WITH_INVOICE:
        vat = amount * Decimal("0.12")
        ewt = amount * ewt_pct / Decimal("100")
        return vat, ewt, amount + vat - ewt
    if calc == CALC_VAT_DEDUCTION:
        net = amount / Decimal("1.12")
        return net * Decimal("0.12"), None, net
    return None, None, amount


def _agent_figures(comm, calculation_type, rate, developers_rate, ewt_rate) -> dict:
    figures = {"net_of_vat": None, "amount": None, "vat": None, "ewt": None, "net_comm": None}

    comm_d = _to_decimal(comm)
    rate_d = _to_decimal(rate)
    dev_rate_d = _to_decimal(developers_rate) if developers_rate not in (None, "") else Decimal("5")
    if comm_d == Decimal("0") or rate_d == Decimal("0") or dev_rate_d == Decimal("0"):
        return figures

    calc = _normalize_calc(calculation_type)
    if calc in INVOICED_CALCULATION_TYPES:
        figures["net_of_vat"] = comm_d / Decimal("1.02")
        amount = figures["net_of_vat"] * rate_d / dev_rate_d
    else:
        amount = comm_d * rate_d / dev_rate_d

    figures["vat"], figures["ewt"], figures["net_comm"] = _settle(amount, calc, ewt_rate)
    if calc != CALC_NONVAT_WITHOUT_INVOICE:
        figures["amount"] = amount
    return figures


def compute_commission_share(
    comm,
    calculation_type: str | None,
    rate,
    developers_rate=None,
    ewt_rate=None,
) -> dict:
    """
    Compute the agent's share of a gross commission.

    With an invoice the developer's 2% is stripped first:
      net_of_vat = comm / 1.02
      amount     = net_of_vat * rate / developers_rate
      ewt        = amount * ewt_rate%
      nonvat with invoice: net = amount - ewt
      vat with invoice:    vat = amount * 12%, net = amount + vat - ewt
    Without an invoice the gross is used:
      vat deduction:          amount = comm * rate / developers_rate,
                              net = amount / 1.12, vat = net * 12%
      nonvat without invoice: net = comm * rate / developers_rate

    Missing comm or rate yields all None. Figures that do not apply to the
    calculation type stay None.
    """
    figures = _agent_figures(comm, calculation_type, rate, developers_rate, ewt_rate)
    return {key: _money_or_none(value) for key, value in figures.items()}


def compute_override_share(
    comm,
    net_of_vat,
    agent_calculation_type: str | None,
    calculation_type: str | None,
    rate,
    developers_rate=None,
    ewt_rate=None,
) -> dict:
    """
    Unit manager / team leader share.

    The base is the gross comm when the agent is paid without an invoice or
    the share itself is not invoiced; otherwise it is the agent's unrounded
    net_of_vat. The share then settles with its own calculation type.
    """
    result = {"amount": None, "vat": None, "ewt": None, "net_comm": None}

    rate_d = _to_decimal(rate)
    dev_rate_d = _to_decimal(developers_rate) if developers_rate not in (None, "") else Decimal("5")
    if rate_d == Decimal("0") or dev_rate_d == Decimal("0"):
        return result

    agent_calc = _normalize_calc(agent_calculation_type)
    calc = _normalize_calc(calculation_type or agent_calculation_type)
    if agent_calc in GROSS_CALCULATION_TYPES or calc not in INVOICED_CALCULATION_TYPES:
        base = _to_decimal(comm)
    else:
        base = net_of_vat
    if not base:
        return result

    amount = base * rate_d / dev_rate_d
    vat, ewt, net = _settle(amount, calc, ewt_rate)
    result["amount"] = _money(amount)
    result["vat"] = _money_or_none(vat)
    result["ewt"] = _money_or_none(ewt)
    result["net_comm"] = _money(net)
    return result


# ---------------------------------------------------------------------
# Accounts & profiles
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """Login account (1-1 with UserProfile)."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    profile = db.relationship(
        "UserProfile",
        back_populates="user",
        uselist=False,
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f"<User {self.email}>"


class UserProfile(db.Model):
    """Role, name and area of a user. Created by an administrator, never hard-deleted."""

    __tablename__ = "user_profiles"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), nullable=False, unique=True, default=_new_uuid, index=True)

    auth_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
        index=True,
    )

    email = db.Column(db.String(255), nullable=True, index=True)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    full_name = db.Column(db.String(255), nullable=True, index=True)

    role = db.Column(db.String(20), nullable=False, default=ROLE_SECRETARY, index=True)
    assigned_area = db.Column(db.String(120), nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    last_login_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", back_populates="profile")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def display_name(self) -> str:
        return self.full_name or self.first_name or self.email or self.uuid

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "auth_user_id": self.auth_user_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "role": self.role,
            "assigned_area": self.assigned_area,
            "status": self.status,
            "last_login_at": _iso(self.last_login_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<UserProfile {self.full_name} ({self.role})>"


# ---------------------------------------------------------------------
# TIN library
# ---------------------------------------------------------------------
class TaxpayerListing(db.Model):
    __tablename__ = "taxpayer_listings"

    id = db.Column(db.Integer, primary_key=True)

    tin = db.Column(db.String(20), nullable=False, index=True)
    registered_name = db.Column(db.String(255), nullable=True, index=True)
    substreet_street_brgy = db.Column(db.String(255), nullable=True)
    district_city_zip = db.Column(db.String(255), nullable=True)
    type = db.Column(db.String(20), nullable=False, default="sales", index=True)

    date_added = db.Column(db.Date, default=date.today)
    user_uuid = db.Column(db.String(36), nullable=True, index=True)
    user_full_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("tin", "type", name="uq_taxpayer_tin_type"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tin": self.tin,
            "registered_name": self.registered_name,
            "substreet_street_brgy": self.substreet_street_brgy,
            "district_city_zip": self.district_city_zip,
            "type": self.type,
            "date_added": _iso(self.date_added),
            "user_uuid": self.user_uuid,
            "user_full_name": self.user_full_name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<TaxpayerListing {self.tin} ({self.type})>"


# ---------------------------------------------------------------------
# Sales / Purchases
# ---------------------------------------------------------------------
class Sale(db.Model):
    __tablename__ = "sales"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), nullable=False, unique=True, default=_new_uuid, index=True)

    tax_month = db.Column(db.Date, nullable=False, index=True)

    tin_id = db.Column(
        db.Integer,
        db.ForeignKey("taxpayer_listings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    tin = db.Column(db.String(20), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=True)
    substreet_street_brgy = db.Column(db.String(255), nullable=True)
    district_city_zip = db.Column(db.String(255), nullable=True)

    gross_taxable = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_actual_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    sale_type = db.Column(db.String(30), nullable=False, default="invoice")
    invoice_number = db.Column(db.String(100), nullable=True, index=True)
    tax_type = db.Column(db.String(20), nullable=False, index=True)
    pickup_date = db.Column(db.Date, nullable=True)

    cheque = db.Column(db.JSON, nullable=True)
    voucher = db.Column(db.JSON, nullable=True)
    invoice = db.Column(db.JSON, nullable=True)
    doc_2307 = db.Column(db.JSON, nullable=True)
    deposit_slip = db.Column(db.JSON, nullable=True)

    # JSON-encoded list of {remark, name, uuid, date}
    remarks = db.Column(db.Text, nullable=True)

    date_added = db.Column(db.Date, default=date.today)
    user_uuid = db.Column(db.String(36), nullable=True, index=True)
    user_full_name = db.Column(db.String(255), nullable=True)

    is_deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    taxpayer = db.relationship("TaxpayerListing", foreign_keys=[tin_id])

    @property
    def files_count(self) -> int:
        return sum(len(getattr(self, field) or []) for field in SALE_ATTACHMENT_FIELDS)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "uuid": self.uuid,
            "tax_month": _iso(self.tax_month),
            "tin_id": self.tin_id,
            "tin": self.tin,
            "name": self.name,
            "type": self.type,
            "substreet_street_brgy": self.substreet_street_brgy,
            "district_city_zip": self.district_city_zip,
            "gross_taxable": _num(self.gross_taxable),
            "total_actual_amount": _num(self.total_actual_amount),
            "sale_type": self.sale_type,
            "invoice_number": self.invoice_number,
            "tax_type": self.tax_type,
            "pickup_date": _iso(self.pickup_date),
            "remarks": self.remarks,
            "date_added": _iso(self.date_added),
            "user_uuid": self.user_uuid,
            "user_full_name": self.user_full_name,
            "is_deleted": self.is_deleted,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        for field in SALE_ATTACHMENT_FIELDS:
            data[field] = getattr(self, field)
        return data

    def __repr__(self):
        return f"<Sale {self.tin} {self.tax_month}>"


class PurchaseCategory(db.Model):
    __tablename__ = "purchases_categories"

    id = db.Column(db.Integer, primary_key=True)

    category = db.Column(db.String(120), nullable=False, unique=True, index=True)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)

    user_uuid = db.Column(db.String(36), nullable=True)
    user_full_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "is_default": self.is_default,
            "is_deleted": self.is_deleted,
            "user_uuid": self.user_uuid,
            "user_full_name": self.user_full_name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Purchase(db.Model):
    __tablename__ = "purchases"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), nullable=False, unique=True, default=_new_uuid, index=True)

    tax_month = db.Column(db.Date, nullable=False, index=True)

    tin_id = db.Column(
        db.Integer,
        db.ForeignKey("taxpayer_listings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    tin = db.Column(db.String(20), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    substreet_street_brgy = db.Column(db.String(255), nullable=True)
    district_city_zip = db.Column(db.String(255), nullable=True)

    gross_taxable = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_actual_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    invoice_number = db.Column(db.String(100), nullable=True, index=True)
    tax_type = db.Column(db.String(20), nullable=False, index=True)

    official_receipt = db.Column(db.JSON, nullable=True)

    category_id = db.Column(
        db.Integer,
        db.ForeignKey("purchases_categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    remarks = db.Column(db.Text, nullable=True)

    date_added = db.Column(db.Date, default=date.today)
    user_uuid = db.Column(db.String(36), nullable=True, index=True)
    user_full_name = db.Column(db.String(255), nullable=True)

    is_deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    taxpayer = db.relationship("TaxpayerListing", foreign_keys=[tin_id])
    category = db.relationship("PurchaseCategory", foreign_keys=[category_id])

    @property
    def category_name(self) -> str | None:
        return self.category.category if self.category else None

    @property
    def files_count(self) -> int:
        return len(self.official_receipt or [])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "tax_month": _iso(self.tax_month),
            "tin_id": self.tin_id,
            "tin": self.tin,
            "name": self.name,
            "substreet_street_brgy": self.substreet_street_brgy,
            "district_city_zip": self.district_city_zip,
            "gross_taxable": _num(self.gross_taxable),
            "total_actual_amount": _num(self.total_actual_amount),
            "invoice_number": self.invoice_number,
            "tax_type": self.tax_type,
            "official_receipt": self.official_receipt,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "remarks": self.remarks,
            "date_added": _iso(self.date_added),
            "user_uuid": self.user_uuid,
            "user_full_name": self.user_full_name,
            "is_deleted": self.is_deleted,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Purchase {self.tin} {self.tax_month}>"


# ---------------------------------------------------------------------
# Commission
# ---------------------------------------------------------------------
class CommissionReport(db.Model):
    __tablename__ = "commission_reports"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), nullable=False, unique=True, default=_new_uuid, index=True)

    report_number = db.Column(db.Integer, nullable=False, unique=True, index=True)
    sales_uuids = db.Column(db.JSON, nullable=False, default=list)

    created_by = db.Column(
        db.Integer,
        db.ForeignKey("user_profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    status = db.Column(db.String(40), nullable=False, default="new", index=True)
    remarks = db.Column(db.Text, nullable=True)
    history = db.Column(db.JSON, nullable=True)

    # JSON-encoded lists of {name, url, uploadedAt}
    accounting_pot = db.Column(db.Text, nullable=True)
    secretary_pot = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    creator = db.relationship("UserProfile", foreign_keys=[created_by])

    agent_breakdowns = db.relationship(
        "CommissionAgentBreakdown",
        back_populates="report",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "report_number": self.report_number,
            "sales_uuids": self.sales_uuids or [],
            "created_by": self.created_by,
            "creator_name": self.creator.full_name if self.creator else None,
            "assigned_area": self.creator.assigned_area if self.creator else None,
            "status": self.status,
            "remarks": self.remarks,
            "history": self.history or [],
            "accounting_pot": self.accounting_pot,
            "secretary_pot": self.secretary_pot,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "deleted_at": _iso(self.deleted_at),
        }

    def __repr__(self):
        return f"<CommissionReport #{self.report_number}>"


class CommissionAgentBreakdown(db.Model):
    """Per-agent commission line of a report (agent + unit manager + team leader shares)."""

    __tablename__ = "commission_agent_breakdown"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), nullable=False, unique=True, default=_new_uuid, index=True)

    commission_report_id = db.Column(
        db.Integer,
        db.ForeignKey("commission_reports.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    commission_report_number = db.Column(db.Integer, nullable=False, index=True)

    sale_uuid = db.Column(db.String(36), nullable=True, index=True)
    agent_uuid = db.Column(db.String(36), nullable=True, index=True)

    agent_name = db.Column(db.String(255), nullable=False, index=True)
    developer = db.Column(db.String(255), nullable=True, index=True)
    client = db.Column(db.String(255), nullable=True, index=True)
    reservation_date = db.Column(db.Date, nullable=True)

    comm = db.Column(db.Numeric(14, 2), nullable=True)
    comm_type = db.Column(db.String(30), nullable=True, default="COMM")
    bdo_account = db.Column(db.String(60), nullable=True)
    net_of_vat = db.Column(db.Numeric(14, 2), nullable=True)
    status = db.Column(db.String(40), nullable=True, index=True)

    calculation_type = db.Column(db.String(40), nullable=True, default=CALC_NONVAT_WITH_INVOICE)
    agents_rate = db.Column(db.Numeric(6, 2), nullable=True)
    developers_rate = db.Column(db.Numeric(6, 2), nullable=True)
    agent_amount = db.Column(db.Numeric(14, 2), nullable=True)
    agent_vat = db.Column(db.Numeric(14, 2), nullable=True)
    agent_ewt = db.Column(db.Numeric(14, 2), nullable=True)
    agent_ewt_rate = db.Column(db.Numeric(6, 2), nullable=True)
    agent_net_comm = db.Column(db.Numeric(14, 2), nullable=True)

    um_name = db.Column(db.String(255), nullable=True)
    um_bdo_account = db.Column(db.String(60), nullable=True)
    um_calculation_type = db.Column(db.String(40), nullable=True)
    um_rate = db.Column(db.Numeric(6, 2), nullable=True)
    um_developers_rate = db.Column(db.Numeric(6, 2), nullable=True)
    um_amount = db.Column(db.Numeric(14, 2), nullable=True)
    um_vat = db.Column(db.Numeric(14, 2), nullable=True)
    um_ewt = db.Column(db.Numeric(14, 2), nullable=True)
    um_ewt_rate = db.Column(db.Numeric(6, 2), nullable=True)
    um_net_comm = db.Column(db.Numeric(14, 2), nullable=True)

    tl_name = db.Column(db.String(255), nullable=True)
    tl_bdo_account = db.Column(db.String(60), nullable=True)
    tl_calculation_type = db.Column(db.String(40), nullable=True)
    tl_rate = db.Column(db.Numeric(6, 2), nullable=True)
    tl_developers_rate = db.Column(db.Numeric(6, 2), nullable=True)
    tl_amount = db.Column(db.Numeric(14, 2), nullable=True)
    tl_vat = db.Column(db.Numeric(14, 2), nullable=True)
    tl_ewt = db.Column(db.Numeric(14, 2), nullable=True)
    tl_ewt_rate = db.Column(db.Numeric(6, 2), nullable=True)
    tl_net_comm = db.Column(db.Numeric(14, 2), nullable=True)

    memberid = db.Column(db.String(60), nullable=True)
    secretary_remarks = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    report = db.relationship("CommissionReport", back_populates="agent_breakdowns")

    def recalc(self):
        """Recompute net_of_vat and the agent/UM/TL derived amounts from comm and rates."""
        agent = _agent_figures(
            self.comm,
            self.calculation_type,
            self.agents_rate,
            self.developers_rate,
            self.agent_ewt_rate,
        )
        self.net_of_vat = _money_or_none(agent["net_of_vat"])
        self.agent_amount = _money_or_none(agent["amount"])
        self.agent_vat = _money_or_none(agent["vat"])
        self.agent_ewt = _money_or_none(agent["ewt"])
        self.agent_net_comm = _money_or_none(agent["net_comm"])

        for prefix in ("um", "tl"):
            if not getattr(self, f"{prefix}_name"):
                continue
            share = compute_override_share(
                self.comm,
                agent["net_of_vat"],
                self.calculation_type,
                getattr(self, f"{prefix}_calculation_type"),
                getattr(self, f"{prefix}_rate"),
                getattr(self, f"{prefix}_developers_rate"),
                getattr(self, f"{prefix}_ewt_rate"),
            )
            setattr(self, f"{prefix}_amount", share["amount"])
            setattr(self, f"{prefix}_vat", share["vat"])
            setattr(self, f"{prefix}_ewt", share["ewt"])
            setattr(self, f"{prefix}_net_comm", share["net_comm"])

    def to_dict(self) -> dict:
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, Decimal):
                value = float(value)
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            data[column.name] = value
        return data


# ---------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------
class Notification(db.Model):
    """Append-only activity log. Written by audit.log_notification only."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)

    action = db.Column(db.String(80), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    user_uuid = db.Column(db.String(36), nullable=True, index=True)
    user_name = db.Column(db.String(255), nullable=True, index=True)
    user_email = db.Column(db.String(255), nullable=True, index=True)

    ip_address = db.Column(db.String(45), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    meta = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "description": self.description,
            "user_uuid": self.user_uuid,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "ip_address": self.ip_address,
            "location": self.location,
            "user_agent": self.user_agent,
            "meta": self.meta,
            "created_at": _iso(self.created_at),
        }
