"""
Object key builders, sanitization and URL <-> key mapping.
"""

from datetime import datetime

import pytest

from lrsync.storage import (
    ATTACHMENT_SOURCE_SECRETARY,
    ObjectStorage,
    attachment_key,
    attachment_label,
    clean_area,
    clean_extension,
    is_safe_key,
    receipt_key,
    unique_receipt_numbers,
)

from conftest import FakeS3Client

PUBLIC_URL = "https://test-bucket.s3.ap-southeast-1.amazonaws.com"
NOW = datetime(2024, 3, 5, 14, 7, 9)


# =============================================================================
# KEY BUILDERS
# =============================================================================


class TestAttachmentKey:
    def test_accounting_pdf_layout(self):
        file_name, key = attachment_key(
            "lrsync", "Cebu City", "42", 3, "application/pdf", "scan.PDF", now=NOW, suffix="abc123"
        )
        assert file_name == "CR_42-Accounting_PDF_Attachment_3-20240305-140709-abc123.PDF"
        assert key == f"lrsync/commission_report_attachments/Cebu City/CR_42/{file_name}"

    def test_secretary_image_label(self):
        file_name, _ = attachment_key(
            "lrsync", "Cebu", "7", 1, "image/png", "photo.png",
            source=ATTACHMENT_SOURCE_SECRETARY, now=NOW, suffix="ff00aa",
        )
        assert file_name.startswith("CR_7-Secreatary_Image_Attachment_1-")

    @pytest.mark.parametrize(
        "content_type,expected",
        [
            ("application/pdf", "Accounting_PDF_Attachment"),
            ("image/jpeg", "Accounting_Image_Attachment"),
            ("text/plain", "Attachment"),
            (None, "Attachment"),
        ],
    )
    def test_label_by_content_type(self, content_type, expected):
        assert attachment_label(content_type) == expected

    def test_same_second_uploads_get_distinct_keys(self):
        keys = {
            attachment_key("lrsync", "Cebu", "1", 1, "application/pdf", "a.pdf", now=NOW)[1]
            for _ in range(20)
        }
        assert len(keys) == 20

    def test_hostile_parts_are_sanitized(self):
        _, key = attachment_key(
            "lrsync", "Cebu/../../etc", "1/../2", 1, "application/pdf", "x.p/df", now=NOW, suffix="aa"
        )
        assert is_safe_key(key)
        assert "/../" not in key
        assert clean_area("Cebu/../../etc") == "Cebu_etc"


class TestReceiptKey:
    def test_layout_and_cleaning(self):
        file_name, key = receipt_key(
            "lrsync", "12345678", "Juan's Hardware & Co.", "123-456-789", "Cebu", "Maria Santos",
            "receipt.jpg", now=NOW,
        )
        assert file_name == "OR 12345678 - Juans Hardware Co - 123-456-789 (Cebu - Maria Santos).jpg"
        assert key == f"lrsync/purchases/2024/03/05/{file_name}"
        assert is_safe_key(key)

    def test_missing_parts_default_to_unknown(self):
        file_name, _ = receipt_key("lrsync", "87654321", None, None, None, None, "noext", now=NOW)
        assert file_name == "OR 87654321 - Unknown - Unknown (Unknown - Unknown).dat"

    def test_receipt_numbers_unique_within_batch(self):
        numbers = unique_receipt_numbers(50)
        assert len(set(numbers)) == 50
        assert all(len(n) == 8 and n.isdigit() for n in numbers)


# =============================================================================
# SANITIZATION
# =============================================================================


class TestSafeKey:
    @pytest.mark.parametrize(
        "key",
        ["lrsync/../secret", "lrsync//x", "lrsync/./x", "lrsync/a#b.pdf", "", "lrsync/a?b"],
    )
    def test_rejects(self, key):
        assert not is_safe_key(key)

    def test_accepts_generated_style(self):
        assert is_safe_key("lrsync/purchases/2024/03/05/OR 1 - A (B - C).pdf")

    def test_extension(self):
        assert clean_extension("report.final.xlsx") == "xlsx"
        assert clean_extension("weird.p$d f") == "pdf"
        assert clean_extension("README") == "dat"


# =============================================================================
# URL MAPPING
# =============================================================================


class TestObjectStorage:
    def test_upload_is_public_and_url_maps_back_to_key(self):
        client = FakeS3Client()
        storage = ObjectStorage(client, "test-bucket", PUBLIC_URL)
        key = "lrsync/purchases/2024/03/05/OR 12345678 - Acme - 123 (Cebu - Ana).pdf"

        url = storage.upload(key, b"%PDF", "application/pdf")

        assert url.startswith(PUBLIC_URL + "/lrsync/purchases/")
        assert " " not in url
        assert client.objects[key]["ACL"] == "public-read"
        assert client.objects[key]["ContentType"] == "application/pdf"
        assert storage.key_from_url(url) == key

    def test_foreign_host_url_uses_path(self):
        storage = ObjectStorage(FakeS3Client(), "test-bucket", PUBLIC_URL)
        assert storage.key_from_url("https://cdn.example.com/lrsync/a%20b.pdf") == "lrsync/a b.pdf"

    def test_default_public_url_from_bucket_and_region(self):
        storage = ObjectStorage(FakeS3Client(), "bucket-x", region="ap-southeast-1")
        assert storage.public_url_for("k/x.pdf") == "https://bucket-x.s3.ap-southeast-1.amazonaws.com/k/x.pdf"

    def test_delete_missing_key_succeeds(self):
        client = FakeS3Client()
        storage = ObjectStorage(client, "test-bucket", PUBLIC_URL)
        storage.delete("lrsync/nothing-here.pdf")
        assert client.deleted == ["lrsync/nothing-here.pdf"]
