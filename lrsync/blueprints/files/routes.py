"""
File upload / delete endpoints (object storage + Google Drive).

- POST /api/upload-to-s3                      accounting attachments of a commission report
- POST /api/upload-to-s3-secretary            secretary attachments of a commission report
- POST /api/upload-official-receipt-purchases official receipts of a purchase
- POST /api/delete-from-s3                    {key} or {url}
- POST /api/delete-from-s3-secretary          {url}
- POST /api/upload-to-drive                   files of a commission report -> Drive folder

IMPORTANT:
- Uploads are multipart/form-data with one or more "files" parts.
- Keys are built from sanitized parts only; a delete request must name a key
  inside this application's prefix.
- Uploaded objects are public-read. The returned URL is what gets stored on the
  record (sale attachment lists, purchase official_receipt, report pots).
"""

from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError
from flask import Blueprint, abort, current_app, jsonify, request

from ...audit import log_notification
from ...models import ROLE_SECRETARY, ROLE_SUPER_ADMIN
from ...security import api_role_required
from ...storage import (
    ATTACHMENT_SOURCE_ACCOUNTING,
    ATTACHMENT_SOURCE_SECRETARY,
    attachment_key,
    get_object_storage,
    is_safe_key,
    receipt_key,
    unique_receipt_numbers,
)
from ...document_host import get_document_host
from ...utils import clean_str, parse_optional_int, request_data

files_bp = Blueprint("files", __name__, url_prefix="/api")


def _uploaded_files():
    files = [f for f in request.files.getlist("files") if f and f.filename]
    if not files:
        abort(400, description="No files provided")
    return files


def _key_prefix() -> str:
    return current_app.config.get("S3_KEY_PREFIX", "lrsync").strip("/")


def _checked_key(key: str | None) -> str:
    key = (key or "").strip().lstrip("/")
    if not key or not is_safe_key(key) or not key.startswith(_key_prefix() + "/"):
        abort(400, description="Invalid file key.")
    return key


# ---------------------------------------------------------------------
# Commission report attachments
# ---------------------------------------------------------------------
def _upload_report_attachments(source: str):
    files = _uploaded_files()
    form = request.form
    assigned_area = clean_str(form.get("assigned_area"))
    report_number = clean_str(form.get("report_number"))
    existing_count = max(parse_optional_int(form.get("existing_count")) or 0, 0)

    storage = get_object_storage()
    uploaded = []
    try:
        for i, file in enumerate(files):
            file_name, key = attachment_key(
                _key_prefix(),
                assigned_area,
                report_number,
                existing_count + i + 1,
                file.mimetype,
                file.filename,
                source=source,
            )
            url = storage.upload(key, file.read(), file.mimetype)
            uploaded.append({"name": file_name, "url": url})
    except (BotoCoreError, ClientError):
        current_app.logger.exception("S3 upload failed for report %s", report_number)
        abort(500, description="Failed to upload files")

    log_notification(
        "commission_report_files_uploaded",
        f"Uploaded {len(uploaded)} {source.lower()} file(s) for report #{report_number}",
        meta={"report_number": report_number, "assigned_area": assigned_area, "files": uploaded},
    )
    return jsonify({"files": uploaded})


@files_bp.route("/upload-to-s3", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN)
def upload_to_s3():
    return _upload_report_attachments(ATTACHMENT_SOURCE_ACCOUNTING)


@files_bp.route("/upload-to-s3-secretary", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def upload_to_s3_secretary():
    return _upload_report_attachments(ATTACHMENT_SOURCE_SECRETARY)


# ---------------------------------------------------------------------
# Purchase official receipts
# ---------------------------------------------------------------------
@files_bp.route("/upload-official-receipt-purchases", methods=["POST"])
@api_role_required()
def upload_official_receipt():
    files = _uploaded_files()
    form = request.form
    numbers = unique_receipt_numbers(len(files))

    storage = get_object_storage()
    uploaded = []
    try:
        for file, number in zip(files, numbers):
            file_name, key = receipt_key(
                _key_prefix(),
                number,
                form.get("tin_name"),
                form.get("tin_number"),
                form.get("assigned_area"),
                form.get("user_full_name"),
                file.filename,
            )
            url = storage.upload(key, file.read(), file.mimetype)
            uploaded.append({"name": file_name, "url": url})
    except (BotoCoreError, ClientError):
        current_app.logger.exception("S3 upload failed for official receipts")
        abort(500, description="Failed to upload files")

    return jsonify({"files": uploaded})


# ---------------------------------------------------------------------
# Deletes
# ---------------------------------------------------------------------
def _delete_object(key: str):
    try:
        get_object_storage().delete(key)
    except (BotoCoreError, ClientError):
        current_app.logger.exception("S3 delete failed for %s", key)
        abort(500, description="Failed to delete file")

    log_notification("file_deleted", f"Deleted file {key.rsplit('/', 1)[-1]}", meta={"key": key})
    return jsonify({"success": True})


@files_bp.route("/delete-from-s3", methods=["POST"])
@api_role_required()
def delete_from_s3():
    data = request_data()
    key = data.get("key")
    if not key and data.get("url"):
        key = get_object_storage().key_from_url(data["url"])
    if not key:
        abort(400, description="No key or url provided")
    return _delete_object(_checked_key(key))


@files_bp.route("/delete-from-s3-secretary", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def delete_from_s3_secretary():
    url = clean_str(request_data().get("url"))
    if not url:
        abort(400, description="No url provided")
    return _delete_object(_checked_key(get_object_storage().key_from_url(url)))


# ---------------------------------------------------------------------
# Google Drive
# ---------------------------------------------------------------------
@files_bp.route("/upload-to-drive", methods=["POST"])
@api_role_required(ROLE_SUPER_ADMIN, ROLE_SECRETARY)
def upload_to_drive():
    files = _uploaded_files()
    report_id = clean_str(request.form.get("reportId"))
    if not report_id:
        abort(400, description="Report ID is required")
    host = get_document_host()

    # one failing file never aborts the batch
    results = []
    for file in files:
        try:
            results.append(host.upload(file.filename, file.read(), file.mimetype))
        except Exception as exc:
            current_app.logger.exception("Drive upload failed for %s", file.filename)
            results.append({"name": file.filename, "error": str(exc) or exc.__class__.__name__})

    uploaded = [r for r in results if "error" not in r]
    log_notification(
        "drive_files_uploaded",
        f"Uploaded {len(uploaded)} of {len(results)} file(s) to Google Drive for report {report_id}",
        meta={"reportId": report_id, "files": [r.get("originalName") or r.get("name") for r in results]},
    )
    return jsonify({"success": True, "files": results, "reportId": report_id})
