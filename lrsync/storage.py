"""
lrsync/storage.py

S3-compatible object storage for attachments.

Covers:
- Object key builders for commission-report attachments and purchase receipts
- Key sanitization (every path segment matches [A-Za-z0-9_\\-() .]+, never "." or "..")
- Public URL <-> key mapping
- ObjectStorage: thin boto3 wrapper (public-read uploads, idempotent deletes)

IMPORTANT:
- The boto3 client is created lazily on first use and cached in
  app.extensions["object_storage"]. Tests inject an ObjectStorage built
  around a fake client there.
- Uploads inside one request are sequential. Uniqueness of attachment names
  comes from the sequence number plus a random suffix, not from waiting.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime
from typing import Any, List, Optional
from urllib.parse import quote, unquote, urlsplit

import boto3
from flask import current_app

PUBLIC_READ = "public-read"

ATTACHMENT_SOURCE_ACCOUNTING = "Accounting"
# Spelling matches the object names already stored in the bucket.
ATTACHMENT_SOURCE_SECRETARY = "Secreatary"

_SEGMENT_FORBIDDEN = re.compile(r"[^A-Za-z0-9_\-() .]")


# ---------------------------------------------------------------------
# Sanitizing
# ---------------------------------------------------------------------
def _collapse(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def clean_name_part(value: Optional[str], default: str = "Unknown") -> str:
    """Words, spaces and hyphens only (ASCII), whitespace collapsed."""
    cleaned = _collapse(re.sub(r"[^\w\s\-]", "", value or "", flags=re.ASCII))
    return cleaned or default


def clean_token(value: Optional[str], default: str = "Unknown") -> str:
    """Words and hyphens only, other runs become '_' (report numbers)."""
    cleaned = re.sub(r"[^\w\-]+", "_", (value or "").strip(), flags=re.ASCII).strip("_")
    return cleaned or default


def clean_area(value: Optional[str], default: str = "Unknown") -> str:
    cleaned = _collapse(re.sub(r"[^\w\- ]+", "_", (value or "").strip(), flags=re.ASCII))
    return cleaned or default


def clean_extension(filename: Optional[str]) -> str:
    """Extension of an uploaded filename, alphanumerics only ('dat' when none)."""
    filename = filename or ""
    if "." not in filename:
        return "dat"
    ext = re.sub(r"[^A-Za-z0-9]", "", filename.rsplit(".", 1)[1])
    return ext or "dat"


def is_safe_key(key: str) -> bool:
    """True if every segment is non-empty, not '.'/'..' and uses only safe characters."""
    segments = key.split("/")
    for segment in segments:
        if not segment or segment in (".", ".."):
            return False
        if _SEGMENT_FORBIDDEN.search(segment):
            return False
    return True


# ---------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------
def attachment_label(content_type: Optional[str], source: str = ATTACHMENT_SOURCE_ACCOUNTING) -> str:
    content_type = (content_type or "").lower()
    if content_type == "application/pdf":
        return f"{source}_PDF_Attachment"
    if content_type.startswith("image/"):
        return f"{source}_Image_Attachment"
    return "Attachment"


def attachment_key(
    prefix: str,
    assigned_area: Optional[str],
    report_number: Optional[str],
    seq: int,
    content_type: Optional[str],
    filename: Optional[str],
    source: str = ATTACHMENT_SOURCE_ACCOUNTING,
    now: Optional[datetime] = None,
    suffix: Optional[str] = None,
) -> tuple[str, str]:
    """
    Build (file_name, key) for a commission-report attachment:

        {prefix}/commission_report_attachments/{area}/CR_{report}/
            CR_{report}-{label}_{seq}-{YYYYMMDD-HHMMSS}-{suffix}.{ext}
    """
    now = now or datetime.now()
    suffix = suffix or secrets.token_hex(3)
    report = clean_token(str(report_number) if report_number is not None else "")
    area = clean_area(assigned_area)
    label = attachment_label(content_type, source)

    file_name = (
        f"CR_{report}-{label}_{int(seq)}-{now.strftime('%Y%m%d-%H%M%S')}-{suffix}"
        f".{clean_extension(filename)}"
    )
    key = f"{prefix}/commission_report_attachments/{area}/CR_{report}/{file_name}"
    return file_name, key


def unique_receipt_numbers(count: int) -> List[str]:
    """`count` distinct random 8-digit numbers."""
    numbers: List[str] = []
    seen = set()
    while len(numbers) < count:
        candidate = str(10_000_000 + secrets.randbelow(90_000_000))
        if candidate in seen:
            continue
        seen.add(candidate)
        numbers.append(candidate)
    return numbers


def receipt_key(
    prefix: str,
    receipt_number: str,
    tin_name: Optional[str],
    tin_number: Optional[str],
    assigned_area: Optional[str],
    user_full_name: Optional[str],
    filename: Optional[str],
    now: Optional[datetime] = None,
) -> tuple[str, str]:
    """
    Build (file_name, key) for a purchase official receipt:

        {prefix}/purchases/{YYYY}/{MM}/{DD}/
            OR {8 digits} - {name} - {tin} ({area} - {user}).{ext}
    """
    now = now or datetime.now()
    tin = re.sub(r"[^\w\-]", "", tin_number or "", flags=re.ASCII) or "Unknown"

    file_name = (
        f"OR {receipt_number} - {clean_name_part(tin_name)} - {tin} "
        f"({clean_name_part(assigned_area)} - {clean_name_part(user_full_name)})"
        f".{clean_extension(filename)}"
    )
    key = f"{prefix}/purchases/{now:%Y}/{now:%m}/{now:%d}/{file_name}"
    return file_name, key


# ---------------------------------------------------------------------
# Storage client
# ---------------------------------------------------------------------
class ObjectStorage:
    """boto3-backed bucket access with public URL mapping."""

    def __init__(self, client: Any, bucket: str, public_url: str = "", region: Optional[str] = None):
        self.client = client
        self.bucket = bucket
        base = (public_url or "").rstrip("/")
        if not base and bucket:
            base = f"https://{bucket}.s3.{region or 'us-east-1'}.amazonaws.com"
        self.public_base = base

    def public_url_for(self, key: str) -> str:
        return f"{self.public_base}/{quote(key.lstrip('/'), safe='/()-_.')}"

    def key_from_url(self, url: str) -> str:
        """Map a public URL back to its object key (prefix stripped, percent-decoded)."""
        url = (url or "").strip()
        if self.public_base and url.startswith(self.public_base + "/"):
            path = url[len(self.public_base) + 1:]
        else:
            path = urlsplit(url).path
        return unquote(path).lstrip("/")

    def upload(self, key: str, body: bytes, content_type: Optional[str] = None) -> str:
        """Store `body` under `key` (public-read) and return its public URL."""
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ACL": PUBLIC_READ,
        }
        if content_type:
            params["ContentType"] = content_type
        self.client.put_object(**params)
        return self.public_url_for(key)

    def delete(self, key: str) -> None:
        # S3 DeleteObject succeeds for keys that do not exist.
        self.client.delete_object(Bucket=self.bucket, Key=key)


def _build_storage(config) -> ObjectStorage:
    client = boto3.client(
        "s3",
        region_name=config.get("S3_REGION"),
        aws_access_key_id=config.get("S3_ACCESS_KEY_ID"),
        aws_secret_access_key=config.get("S3_SECRET_ACCESS_KEY"),
        endpoint_url=config.get("S3_ENDPOINT_URL"),
    )
    return ObjectStorage(
        client,
        bucket=config.get("S3_BUCKET_NAME", ""),
        public_url=config.get("S3_PUBLIC_URL", ""),
        region=config.get("S3_REGION"),
    )


def get_object_storage() -> ObjectStorage:
    """Return the app's ObjectStorage, creating it on first use."""
    storage = current_app.extensions.get("object_storage")
    if storage is None:
        storage = _build_storage(current_app.config)
        current_app.extensions["object_storage"] = storage
    return storage
