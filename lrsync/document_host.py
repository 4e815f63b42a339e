"""
lrsync/document_host.py

Google Drive "document host" for commission report files.

Files are uploaded into one configured folder with a service account and
made readable by anyone with the link.

IMPORTANT:
- The Drive service is built lazily and cached in app.extensions["document_host"].
- GOOGLE_PRIVATE_KEY is usually stored with literal "\\n" sequences in the
  environment; they are turned back into newlines before use.
"""

from __future__ import annotations

import io
import logging
from typing import Any, Dict, Optional

from flask import current_app
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

logger = logging.getLogger(__name__)

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class DocumentHost:
    """Uploads files to a Drive folder and shares them publicly (reader)."""

    def __init__(self, service: Any, folder_id: str):
        self.service = service
        self.folder_id = folder_id

    def upload(self, filename: str, data: bytes, mime_type: Optional[str] = None) -> Dict[str, Any]:
        """Upload one file; returns {id, name, webViewLink, webContentLink, originalName}."""
        metadata = {"name": filename}
        if self.folder_id:
            metadata["parents"] = [self.folder_id]

        media = MediaIoBaseUpload(
            io.BytesIO(data),
            mimetype=mime_type or "application/octet-stream",
            resumable=False,
        )
        created = (
            self.service.files()
            .create(body=metadata, media_body=media, fields="id,name,webViewLink")
            .execute()
        )
        file_id = created.get("id")
        if not file_id:
            raise RuntimeError("Failed to get file ID from upload response")

        self.service.permissions().create(
            fileId=file_id,
            body={"role": "reader", "type": "anyone"},
        ).execute()

        details = (
            self.service.files()
            .get(fileId=file_id, fields="id,name,webViewLink,webContentLink")
            .execute()
        )
        return {
            "id": file_id,
            "name": details.get("name"),
            "webViewLink": details.get("webViewLink"),
            "webContentLink": details.get("webContentLink"),
            "originalName": filename,
        }


def _build_document_host(config) -> DocumentHost:
    info = {
        "type": "service_account",
        "client_email": config.get("GOOGLE_SERVICE_ACCOUNT_EMAIL", ""),
        "private_key": (config.get("GOOGLE_PRIVATE_KEY") or "").replace("\\n", "\n"),
        "token_uri": TOKEN_URI,
    }
    credentials = service_account.Credentials.from_service_account_info(info, scopes=DRIVE_SCOPES)
    service = build("drive", "v3", credentials=credentials, cache_discovery=False)
    logger.info("Google Drive document host initialised for %s", info["client_email"])
    return DocumentHost(service, config.get("GOOGLE_DRIVE_FOLDER_ID", ""))


def get_document_host() -> DocumentHost:
    host = current_app.extensions.get("document_host")
    if host is None:
        host = _build_document_host(current_app.config)
        current_app.extensions["document_host"] = host
    return host
