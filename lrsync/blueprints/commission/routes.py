"""
Commission routes.

Commission reports:
- create from selected sales (next report number, status "new")
- list (status filter, search), view by report number with sales + agent lines
- status update (appends a history entry), soft delete
- attach / detach files in the accounting or secretary pot
- export list (selected fields) and single report (sale blocks + agent table)

Agent breakdown:
- list (report numbers, status, search), create, update, delete
- /api/update-agent-commission ({id, ...fields} -> {success, data})

IMPORTANT:
- Derived amounts (net_of_vat, amount, vat, ewt, net_comm) are never taken
  from the request; CommissionAgentBreakdown.recalc() computes them.
- Report numbers are unique in the schema. Two concurrent creates may pick the
  same number; the loser receives 409 and can retry.

SECURITY NOTE:
- super_admin sees every report. A secretary sees the reports created by
  profiles of their own area.
"""

from __future__ import annotations

import json
from datetime import datetime

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import func, or_

from ...audit import log_notification, serialize_model
from ...exports import (
    DEFAULT_COMMISSION_REPORT_FIELDS,
    build_commission_report_workbook,
    build_commission_reports_workbook,
    export_filename,
    workbook_response,
)
from ...extensions import db
from ...models import (
    CALCULATION_TYPES,
    REPORT_STATUSES,
    ROLE_SECRETARY,
    ROLE_SUPER_ADMIN,
    CommissionAgentBreakdown,
    CommissionReport,
    Sale,
    UserProfile,
    parse_json_list,
)
from ...security import api_role_required, can_access_record
from ...session import get_auth_session
from ...storage import get_object_storage
from ...utils import (
    clean_str,
    commit_or_conflict,
    paginate,
    parse_date,
    parse_decimal,
    parse_optional_int,
    request_data,
)

commission_bp = Blueprint("commission", __name__, url_prefix="/api")

POTS = {"accounting": "accounting_pot", "secretary": "secretary_pot"}

_BREAKDOWN_DECIMAL_FIELDS = {
    "comm",
    "agents_rate",
    "developers_rate",
    "agent_ewt_rate",
    "um_rate",
    "um_developers_rate",
    "um_ewt_rate",
    "tl_rate",
    "tl_developers_rate",
    "tl_ewt_rate",
}
_BREAKDOWN_DATE_FIELDS = {"reservation_date"}
_BREAKDOWN_TEXT_FIELDS = {
    "sale_uuid",
    "agent_uuid",
    "agent_name",
    "developer",
    "client",
    "comm_type",
    "bdo_account",
    "status",
    "calculation_type",
    "um_name",
    "um_bdo_account",
    "um_calculation_type",
    "tl_name",
    "tl_bdo_account",
    "tl_calculation_type",
    "memberid",
    "secretary_remarks",
}
_CALCULATION_FIELDS = {"calculation_type", "um_calculation_type", "tl_calculation_type"}


# ---------------------------------------------------------------------
# Scoping helpers
# ---------------------------------------------------------------------
def _scoped_reports_query():
    auth = get_auth_session()
    q = CommissionReport.query.filter(CommissionReport.deleted_at.is_(None))
    if auth.role == ROLE_SUPER_ADMIN:
        return q
    area = auth.profile.assigned_area
    if not area:
        return q.filter(CommissionReport.created_by == auth.profile.id)
    area_profile_ids = db.session.query(UserProfile.id).filter(UserProfile.assigned_area == area)
    return q.filter(CommissionReport.created_by.in_(area_profile_ids))


def _report_or_404(report_number: int) -> CommissionReport:
    report = _scoped_reports_query().filter(CommissionReport.report_number == report_number).first()
    if report is None:
        abort(404, description="Commission report not found.")
    return report


def _report_sales(report: CommissionReport) -> list[Sale]:
    uuids = report.sales_uuids or []
    if not uuids:
        return []
    by_uuid = {s.uuid: s for s in Sale.query.filter(Sale.uuid.in_(uuids)).all()}
    return [by_uuid[u] for u in uuids if u in by_uuid]


def _report_breakdowns(report: CommissionReport) -> list[CommissionAgentBreakdown]:
    return (
        CommissionAgentBreakdown.query.filter_by(commission_report_id=report.id)
        .order_by(CommissionAgentBreakdown.id.asc())
        .all()
    )


def _report_payload(report: CommissionReport) -> dict:
    data = report.to_dict()
    data["accounting_attachments"] = parse_json_list(report.accounting_pot)
    data["secretary_attachments"] = parse_json_list(report.secretary_pot)
    return data


# ---------------------------------------------------------------------
# Agent breakdown field handling
# ---------------------------------------------------------------------
def _apply_breakdown_fields(row: CommissionAgentBreakdown, data: dict) -> None:
    for key, value in data.items():
        if key in _BREAKDOWN_DECIMAL_FIELDS:
            parsed = parse_decimal(value)
            if value not in (None, "") and parsed is None:
                abort(400, description=f"{key} must be a number.")
            setattr(row, key, parsed)
        elif key in _BREAKDOWN_DATE_FIELDS:
            parsed = parse_date(value)
            if value not in (None, "") and parsed is None:
                abort(400, description=f"{key} must be a date (YYYY-MM-DD).")
            setattr(row, key, parsed)
        elif key in _BREAKDOWN_TEXT_FIELDS:
            text = clean_str(value)
            if key in _CALCULATION_FIELDS and text:
                text = text.lower()
                if text not in CALCULATION_TYPES:
                    abort(400, description=f"Invalid {key}. Allowed: {', '.join(CALCULATION_TYPES)}.")
            setattr(row, key, text)

    if not row.agent_name:
        abort(400, description="Agent name is required.")
    if row.sale_uuid and row.report is not None and row.sale_uuid not in (row.report.sales_uuids or []):
        abort(400, description="Sale is not part of this commission report.")

    row.recalc()


def _new_breakdown(report: CommissionReport, data: dict) -> CommissionAgentBreakdown:
    row = CommissionAgentBreakdown(
        report=report,
        commission_report_number=report.report_number,
    )
    _apply_breakdown_fields(row, data)
    db.session.add(row)
    return row


def _breakdown_or_404(breakdown_id) -> CommissionAgentBreakdown:
    breakdown_id = parse_optional_int(breakdown_id)
    if breakdown_id is None:
        abort(400, description="id is required.")
    return db.get_or_404(CommissionAgentBreakdown, breakdown_id)


# ---------------------------------------------------------------------
# Commission reports
# ---------------------------------------------------------------------
@commission_bp.route("/commission-reports")
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def list_reports():
    q = _scoped_reports_query()

    status = (request.args.get("status") or "").strip()
    if status and status != "all":
        q = q.filter(CommissionReport.status == status)

    search = (request.args.get("search") or "").strip()
    if search:
        creator_ids = db.session.query(UserProfile.id).filter(
            or_(UserProfile.full_name.ilike(f"%{search}%"), UserProfile.assigned_area.ilike(f"%{search}%"))
        )
        conditions = [CommissionReport.created_by.in_(creator_ids)]
        number = parse_optional_int(search.lstrip("#"))
        if number is not None:
            conditions.append(CommissionReport.report_number == number)
        q = q.filter(or_(*conditions))

    q = q.order_by(CommissionReport.report_number.desc())
    return jsonify(paginate(q, serializer=_report_payload))


@commission_bp.route("/commission-reports", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def create_report():
    auth = get_auth_session()
    data = request_data()

    sales_uuids = data.get("sales_uuids") or data.get("salesUuids") or []
    if not isinstance(sales_uuids, list) or not sales_uuids:
        abort(400, description="Select at least one sale.")
    sales_uuids = list(dict.fromkeys(str(u) for u in sales_uuids))

    sales = Sale.query.filter(Sale.uuid.in_(sales_uuids), Sale.is_deleted.is_(False)).all()
    if len(sales) != len(sales_uuids):
        abort(400, description="One or more selected sales do not exist.")
    if not all(can_access_record(s) for s in sales):
        abort(403, description="Forbidden")

    taken = {}
    for report in CommissionReport.query.filter(CommissionReport.deleted_at.is_(None)).all():
        for sale_uuid in report.sales_uuids or []:
            taken[sale_uuid] = report.report_number
    conflicts = [u for u in sales_uuids if u in taken]
    if conflicts:
        abort(
            409,
            description=f"Sale already belongs to commission report #{taken[conflicts[0]]}.",
        )

    next_number = (db.session.query(func.max(CommissionReport.report_number)).scalar() or 0) + 1
    report = CommissionReport(
        report_number=next_number,
        sales_uuids=sales_uuids,
        created_by=auth.profile.id,
        status="new",
        remarks=clean_str(data.get("remarks")),
        history=[],
    )
    db.session.add(report)

    agents = data.get("agents") or []
    if not isinstance(agents, list):
        abort(400, description="agents must be a list.")
    for agent in agents:
        if not isinstance(agent, dict):
            abort(400, description="agents must be a list of objects.")
        _new_breakdown(report, agent)

    commit_or_conflict("Report number already taken. Please try again.")

    log_notification(
        "commission_report_created",
        f"Created commission report #{report.report_number} with {len(sales_uuids)} sale(s)",
        meta={"report_uuid": report.uuid, "report_number": report.report_number, "sales_uuids": sales_uuids},
    )
    return jsonify(_report_payload(report)), 201


@commission_bp.route("/commission-reports/<int:report_number>")
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def get_report(report_number: int):
    report = _report_or_404(report_number)
    payload = _report_payload(report)
    payload["sales"] = [s.to_dict() for s in _report_sales(report)]
    payload["agent_breakdown"] = [a.to_dict() for a in _report_breakdowns(report)]
    return jsonify(payload)


@commission_bp.route("/commission-reports/<int:report_number>/status", methods=["PUT", "POST"])
@api_role_required(ROLE_SUPER_ADMIN)
def update_report_status(report_number: int):
    report = _report_or_404(report_number)
    auth = get_auth_session()
    data = request_data()

    status = (clean_str(data.get("status")) or "").lower()
    if status not in REPORT_STATUSES:
        abort(400, description=f"Invalid status. Allowed: {', '.join(REPORT_STATUSES)}.")
    remarks = clean_str(data.get("remarks"))

    history = list(report.history or [])
    history.append(
        {
            "action": "status_update",
            "status": status,
            "remarks": remarks or "",
            "user_id": auth.profile.uuid,
            "user_name": auth.profile.display_name,
            "timestamp": datetime.utcnow().isoformat(),
        }
    )
    old_status = report.status
    report.status = status
    report.remarks = remarks
    report.history = history
    db.session.commit()

    log_notification(
        "commission_report_status_updated",
        f'Updated status for report #{report.report_number} to "{status}"',
        meta={
            "report_uuid": report.uuid,
            "report_number": report.report_number,
            "old_status": old_status,
            "new_status": status,
            "remarks": remarks,
        },
    )
    return jsonify(_report_payload(report))


@commission_bp.route("/commission-reports/<int:report_number>", methods=["DELETE"])
@api_role_required(ROLE_SUPER_ADMIN)
def delete_report(report_number: int):
    report = _report_or_404(report_number)
    report.deleted_at = datetime.utcnow()
    db.session.commit()

    log_notification(
        "commission_report_deleted",
        f"Deleted commission report #{report.report_number}",
        meta={"report_uuid": report.uuid, "report_number": report.report_number},
    )
    return jsonify({"success": True})


# ---------------------------------------------------------------------
# Attachments (accounting / secretary pots)
# ---------------------------------------------------------------------
def _pot_json(items: list) -> str:
    return json.dumps(items, ensure_ascii=False)


def _pot_column(data: dict) -> str:
    pot = (clean_str(data.get("pot")) or "accounting").lower()
    if pot not in POTS:
        abort(400, description="pot must be 'accounting' or 'secretary'.")
    if pot == "accounting" and get_auth_session().role != ROLE_SUPER_ADMIN:
        abort(403, description="Only accounting can change accounting attachments.")
    return POTS[pot]


@commission_bp.route("/commission-reports/<int:report_number>/attachments", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def add_report_attachments(report_number: int):
    report = _report_or_404(report_number)
    data = request_data()
    column = _pot_column(data)

    files = data.get("files") or []
    if not isinstance(files, list) or not files:
        abort(400, description="No files provided")

    uploaded_at = datetime.utcnow().isoformat()
    attachments = parse_json_list(getattr(report, column))
    for item in files:
        if not isinstance(item, dict) or not item.get("url"):
            abort(400, description="Each file needs a name and url.")
        attachments.append({"name": item.get("name") or "", "url": item["url"], "uploadedAt": uploaded_at})

    setattr(report, column, _pot_json(attachments))
    db.session.commit()

    log_notification(
        "commission_report_attachment_added",
        f"Added {len(files)} attachment(s) to report #{report.report_number}",
        meta={"report_uuid": report.uuid, "report_number": report.report_number, "attachment_type": column},
    )
    return jsonify({"success": True, "attachments": attachments})


@commission_bp.route("/commission-reports/<int:report_number>/attachments", methods=["DELETE"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def remove_report_attachment(report_number: int):
    report = _report_or_404(report_number)
    data = request_data()
    column = _pot_column(data)

    url = clean_str(data.get("url"))
    if not url:
        abort(400, description="url is required.")

    attachments = parse_json_list(getattr(report, column))
    remaining = [a for a in attachments if not (isinstance(a, dict) and a.get("url") == url)]
    if len(remaining) == len(attachments):
        abort(404, description="Attachment not found.")

    storage = get_object_storage()
    storage.delete(storage.key_from_url(url))

    setattr(report, column, _pot_json(remaining))
    db.session.commit()

    removed = next(a for a in attachments if isinstance(a, dict) and a.get("url") == url)
    log_notification(
        "commission_report_attachment_deleted",
        f'Deleted attachment "{removed.get("name", "")}" from report #{report.report_number}',
        meta={
            "report_uuid": report.uuid,
            "report_number": report.report_number,
            "attachment_name": removed.get("name"),
            "attachment_url": url,
            "attachment_type": column,
        },
    )
    return jsonify({"success": True, "attachments": remaining})


# ---------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------
@commission_bp.route("/commission-reports/export", methods=["GET", "POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def export_reports():
    data = request_data() if request.method == "POST" else {}
    fields = data.get("fields") or [f for f in (request.args.get("fields") or "").split(",") if f]
    fields = fields or DEFAULT_COMMISSION_REPORT_FIELDS

    q = _scoped_reports_query()
    status = (request.args.get("status") or data.get("status") or "").strip()
    if status and status != "all":
        q = q.filter(CommissionReport.status == status)
    reports = q.order_by(CommissionReport.report_number.desc()).all()

    auth = get_auth_session()
    area = None if auth.role == ROLE_SUPER_ADMIN else auth.profile.assigned_area
    try:
        wb = build_commission_reports_workbook(reports, fields, area=area)
    except ValueError as exc:
        abort(400, description=str(exc))

    filename = export_filename("Commission_Reports", area)
    log_notification(
        "commission_reports_exported",
        f"Commission reports exported to Excel ({len(reports)} records)",
        meta={"recordCount": len(reports), "selectedFields": list(fields), "filename": filename},
    )
    return workbook_response(wb, filename)


@commission_bp.route("/commission-reports/<int:report_number>/export")
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def export_report(report_number: int):
    report = _report_or_404(report_number)
    wb = build_commission_report_workbook(report, _report_sales(report), _report_breakdowns(report))

    creator = report.creator.full_name if report.creator else "User"
    filename = f"Commission Report #{report.report_number} - {creator} - {datetime.now():%Y-%m-%d %H-%M}.xlsx"
    log_notification(
        "commission_report_exported",
        f"Exported commission report #{report.report_number}",
        meta={"report_uuid": report.uuid, "report_number": report.report_number, "filename": filename},
    )
    return workbook_response(wb, filename)


# ---------------------------------------------------------------------
# Agent breakdown
# ---------------------------------------------------------------------
@commission_bp.route("/agent-breakdown")
@api_role_required(ROLE_SUPER_ADMIN)
def list_agent_breakdown():
    q = CommissionAgentBreakdown.query.join(CommissionReport).filter(CommissionReport.deleted_at.is_(None))

    numbers = [parse_optional_int(n) for n in (request.args.get("report_numbers") or "").split(",")]
    numbers = [n for n in numbers if n is not None]
    if numbers:
        q = q.filter(CommissionAgentBreakdown.commission_report_number.in_(numbers))

    status = (request.args.get("status") or "").strip()
    if status and status != "all":
        q = q.filter(CommissionAgentBreakdown.status == status)

    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                CommissionAgentBreakdown.agent_name.ilike(like),
                func.coalesce(CommissionAgentBreakdown.developer, "").ilike(like),
                func.coalesce(CommissionAgentBreakdown.client, "").ilike(like),
                func.coalesce(CommissionAgentBreakdown.um_name, "").ilike(like),
                func.coalesce(CommissionAgentBreakdown.tl_name, "").ilike(like),
            )
        )

    q = q.order_by(
        CommissionAgentBreakdown.commission_report_number.desc(),
        CommissionAgentBreakdown.id.asc(),
    )
    return jsonify(paginate(q))


@commission_bp.route("/agent-breakdown", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def create_agent_breakdown():
    data = request_data()
    report_number = parse_optional_int(data.get("commission_report_number"))
    if report_number is None:
        abort(400, description="commission_report_number is required.")
    report = _report_or_404(report_number)

    row = _new_breakdown(report, data)
    db.session.commit()

    log_notification(
        "commission_agent_added",
        f"Added agent {row.agent_name} to report #{report.report_number}",
        meta={"breakdown_uuid": row.uuid, "report_number": report.report_number},
    )
    return jsonify(row.to_dict()), 201


def _update_breakdown(row: CommissionAgentBreakdown, data: dict) -> CommissionAgentBreakdown:
    before = serialize_model(row)
    _apply_breakdown_fields(row, data)
    db.session.commit()

    log_notification(
        "commission_agent_updated",
        f"Updated agent {row.agent_name} on report #{row.commission_report_number}",
        meta={"before": before, "after": serialize_model(row)},
    )
    return row


@commission_bp.route("/agent-breakdown/<int:breakdown_id>", methods=["PUT", "PATCH"])
@api_role_required(ROLE_SUPER_ADMIN)
def update_agent_breakdown(breakdown_id: int):
    row = _breakdown_or_404(breakdown_id)
    return jsonify(_update_breakdown(row, request_data()).to_dict())


@commission_bp.route("/update-agent-commission", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN)
def update_agent_commission():
    data = request_data()
    row = _breakdown_or_404(data.get("id"))
    row = _update_breakdown(row, {k: v for k, v in data.items() if k != "id"})
    return jsonify({"success": True, "data": row.to_dict()})


@commission_bp.route("/agent-breakdown/<int:breakdown_id>", methods=["DELETE"])
@api_role_required(ROLE_SUPER_ADMIN)
def delete_agent_breakdown(breakdown_id: int):
    row = _breakdown_or_404(breakdown_id)
    meta = {"breakdown_uuid": row.uuid, "report_number": row.commission_report_number, "agent_name": row.agent_name}
    db.session.delete(row)
    db.session.commit()

    log_notification(
        "commission_agent_deleted",
        f"Deleted agent {meta['agent_name']} from report #{meta['report_number']}",
        meta=meta,
    )
    return jsonify({"success": True})
