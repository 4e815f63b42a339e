"""
Upload / delete endpoints backed by the fake S3 client and Drive host.
"""

import io
import re

import pytest
from botocore.exceptions import ClientError

from lrsync.models import Notification

PUBLIC = "https://test-bucket.s3.ap-southeast-1.amazonaws.com"


def _file(name, body=b"%PDF-1.4 test", content_type="application/pdf"):
    return (io.BytesIO(body), name, content_type)


def _upload(client, url, files, **form):
    return client.post(url, data={"files": files, **form}, content_type="multipart/form-data")


# =============================================================================
# COMMISSION REPORT ATTACHMENTS
# =============================================================================


class TestReportUploads:
    def test_accounting_upload_keys_and_urls(self, client, super_admin, login, s3):
        login(super_admin)
        resp = _upload(
            client,
            "/api/upload-to-s3",
            [_file("scan.pdf"), _file("photo.jpg", b"\xff\xd8", "image/jpeg")],
            report_number="42",
            assigned_area="Cebu City",
            existing_count="2",
        )
        assert resp.status_code == 200
        files = resp.get_json()["files"]
        assert files[0]["name"].startswith("CR_42-Accounting_PDF_Attachment_3-")
        assert files[1]["name"].startswith("CR_42-Accounting_Image_Attachment_4-")
        assert files[1]["name"].endswith(".jpg")

        key = f"lrsync/commission_report_attachments/Cebu City/CR_42/{files[0]['name']}"
        assert s3.objects[key]["ACL"] == "public-read"
        assert s3.objects[key]["ContentType"] == "application/pdf"
        assert files[0]["url"] == f"{PUBLIC}/{key.replace(' ', '%20')}"

    def test_accounting_upload_is_super_admin_only(self, client, secretary, login):
        login(secretary)
        assert _upload(client, "/api/upload-to-s3", [_file("scan.pdf")]).status_code == 403

    def test_secretary_upload_label(self, client, secretary, login):
        login(secretary)
        resp = _upload(client, "/api/upload-to-s3-secretary", [_file("scan.pdf")], report_number="7")
        assert resp.get_json()["files"][0]["name"].startswith("CR_7-Secreatary_PDF_Attachment_1-")

    def test_no_files(self, client, super_admin, login):
        login(super_admin)
        resp = client.post("/api/upload-to-s3", data={"report_number": "1"}, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No files provided"

    def test_storage_failure_is_500(self, client, super_admin, login, s3, monkeypatch):
        def fail(**params):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

        monkeypatch.setattr(s3, "put_object", fail)
        login(super_admin)
        resp = _upload(client, "/api/upload-to-s3", [_file("scan.pdf")], report_number="1")
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "Failed to upload files"


# =============================================================================
# PURCHASE RECEIPTS
# =============================================================================


class TestReceiptUploads:
    def test_receipt_names(self, client, secretary, login, s3):
        login(secretary)
        resp = _upload(
            client,
            "/api/upload-official-receipt-purchases",
            [_file("or.jpg", b"\xff\xd8", "image/jpeg"), _file("or2.pdf")],
            tin_name="Office Depot #1",
            tin_number="555-666-777",
            assigned_area="Cebu",
            user_full_name="Sec Tester",
        )
        files = resp.get_json()["files"]
        assert len(files) == 2
        pattern = re.compile(r"OR \d{8} - Office Depot 1 - 555-666-777 \(Cebu - Sec Tester\)\.(jpg|pdf)")
        assert all(pattern.fullmatch(f["name"]) for f in files)
        assert files[0]["name"][:11] != files[1]["name"][:11]
        assert all(k.startswith("lrsync/purchases/") for k in s3.objects)


# =============================================================================
# DELETES
# =============================================================================


class TestDeletes:
    KEY = "lrsync/purchases/2024/03/05/OR 12345678 - Acme - 123 (Cebu - Sec Tester).pdf"

    def test_delete_by_url(self, client, secretary, login, s3, app):
        login(secretary)
        url = f"{PUBLIC}/lrsync/purchases/2024/03/05/OR%2012345678%20-%20Acme%20-%20123%20(Cebu%20-%20Sec%20Tester).pdf"
        resp = client.post("/api/delete-from-s3", json={"url": url})
        assert resp.get_json() == {"success": True}
        assert s3.deleted == [self.KEY]
        with app.app_context():
            assert Notification.query.filter_by(action="file_deleted").count() == 1

    def test_delete_by_key(self, client, secretary, login, s3):
        login(secretary)
        assert client.post("/api/delete-from-s3", json={"key": self.KEY}).status_code == 200
        assert s3.deleted == [self.KEY]

    @pytest.mark.parametrize(
        "key",
        [
            "lrsync/../secrets.txt",
            "lrsync//double.pdf",
            "other-app/file.pdf",
            "lrsync/bad;name.pdf",
        ],
    )
    def test_unsafe_keys_rejected(self, client, secretary, login, s3, key):
        login(secretary)
        resp = client.post("/api/delete-from-s3", json={"key": key})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid file key."
        assert s3.deleted == []

    def test_missing_key_and_url(self, client, secretary, login):
        login(secretary)
        assert client.post("/api/delete-from-s3", json={}).status_code == 400
        assert client.post("/api/delete-from-s3-secretary", json={}).status_code == 400

    def test_secretary_delete(self, client, secretary, login, s3):
        login(secretary)
        resp = client.post("/api/delete-from-s3-secretary", json={"url": f"{PUBLIC}/lrsync/x/y.pdf"})
        assert resp.status_code == 200
        assert s3.deleted == ["lrsync/x/y.pdf"]


# =============================================================================
# GOOGLE DRIVE
# =============================================================================


class TestDriveUpload:
    def test_partial_failure_reported_per_file(self, client, secretary, login, drive):
        login(secretary)
        resp = _upload(client, "/api/upload-to-drive", [_file("good.pdf"), _file("broken.pdf")], reportId="R-1")
        body = resp.get_json()
        assert body["success"] is True
        assert body["reportId"] == "R-1"
        assert body["files"][0]["id"] == "drive-1"
        assert body["files"][0]["webViewLink"].endswith("/drive-1/view")
        assert body["files"][1] == {"name": "broken.pdf", "error": "Failed to get file ID from upload response"}
        assert drive.uploaded == ["good.pdf"]

    def test_transport_error_does_not_abort_batch(self, client, secretary, login, drive):
        login(secretary)
        resp = _upload(client, "/api/upload-to-drive", [_file("timeout.pdf"), _file("good.pdf")], reportId="R-2")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["files"][0] == {"name": "timeout.pdf", "error": "The read operation timed out"}
        assert body["files"][1]["name"] == "good.pdf"
        assert drive.uploaded == ["good.pdf"]

    def test_all_failed_still_reports_batch(self, client, secretary, login):
        login(secretary)
        body = _upload(client, "/api/upload-to-drive", [_file("broken.pdf")], reportId="R-3").get_json()
        assert body["success"] is True
        assert body["files"] == [{"name": "broken.pdf", "error": "Failed to get file ID from upload response"}]

    def test_report_id_required(self, client, secretary, login, drive):
        login(secretary)
        resp = _upload(client, "/api/upload-to-drive", [_file("good.pdf")])
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Report ID is required"
        assert drive.uploaded == []
