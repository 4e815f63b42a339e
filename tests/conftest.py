"""
Pytest fixtures for LR Sync tests.

Provides a fresh application + in-memory database per test, one profile per
role (two areas), a login helper, and fake object storage / document host
clients injected through app.extensions.
"""

from types import SimpleNamespace

import pytest

from config import TestConfig
from lrsync import create_app
from lrsync.extensions import db
from lrsync.models import ROLE_ADMIN, ROLE_SECRETARY, ROLE_SUPER_ADMIN, TaxpayerListing, User, UserProfile
from lrsync.storage import ObjectStorage

PASSWORD = "secret123"


class FakeS3Client:
    """Records put/delete calls the way boto3's S3 client receives them."""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def put_object(self, **params):
        self.objects[params["Key"]] = params

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)
        self.objects.pop(Key, None)


class FakeDocumentHost:
    """Drive stand-in: broken.* fails like the API, timeout.* like the transport."""

    def __init__(self):
        self.uploaded = []

    def upload(self, filename, data, mime_type=None):
        if filename.startswith("broken"):
            raise RuntimeError("Failed to get file ID from upload response")
        if filename.startswith("timeout"):
            raise TimeoutError("The read operation timed out")
        file_id = f"drive-{len(self.uploaded) + 1}"
        self.uploaded.append(filename)
        return {
            "id": file_id,
            "name": filename,
            "webViewLink": f"https://drive.google.com/file/d/{file_id}/view",
            "webContentLink": f"https://drive.google.com/uc?id={file_id}",
            "originalName": filename,
        }


@pytest.fixture()
def app():
    app = create_app("config.TestConfig")
    app.extensions["object_storage"] = ObjectStorage(
        FakeS3Client(), TestConfig.S3_BUCKET_NAME, TestConfig.S3_PUBLIC_URL
    )
    app.extensions["document_host"] = FakeDocumentHost()

    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def s3(app):
    return app.extensions["object_storage"].client


@pytest.fixture()
def drive(app):
    return app.extensions["document_host"]


@pytest.fixture()
def make_user(app):
    """Create an account (+ profile unless with_profile=False); returns plain ids."""

    def _make(email, role=ROLE_SECRETARY, area="Cebu", status="active", with_profile=True, name=None):
        with app.app_context():
            user = User(email=email)
            user.set_password(PASSWORD)
            db.session.add(user)
            db.session.flush()

            profile = None
            if with_profile:
                first = name or email.split("@")[0].title()
                profile = UserProfile(
                    auth_user_id=user.id,
                    email=email,
                    first_name=first,
                    last_name="Tester",
                    full_name=f"{first} Tester",
                    role=role,
                    assigned_area=area,
                    status=status,
                )
                db.session.add(profile)
            db.session.commit()

            return SimpleNamespace(
                email=email,
                user_id=user.id,
                profile_id=profile.id if profile else None,
                uuid=profile.uuid if profile else None,
                full_name=profile.full_name if profile else None,
                area=area,
            )

    return _make


@pytest.fixture()
def super_admin(make_user):
    return make_user("boss@lrsync.test", ROLE_SUPER_ADMIN, area="Head Office")


@pytest.fixture()
def admin(make_user):
    return make_user("admin@lrsync.test", ROLE_ADMIN, area="Cebu")


@pytest.fixture()
def secretary(make_user):
    return make_user("sec@lrsync.test", ROLE_SECRETARY, area="Cebu")


@pytest.fixture()
def other_secretary(make_user):
    return make_user("davao@lrsync.test", ROLE_SECRETARY, area="Davao")


@pytest.fixture()
def login(client):
    def _login(account, password=PASSWORD):
        resp = client.post("/auth/login", json={"email": account.email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp

    return _login


@pytest.fixture()
def sales_taxpayer(app, secretary):
    with app.app_context():
        taxpayer = TaxpayerListing(
            tin="123456789000",
            type="sales",
            registered_name="Acme Realty Corp",
            substreet_street_brgy="12 Mango Ave, Brgy Lahug",
            district_city_zip="Cebu City 6000",
            user_uuid=secretary.uuid,
            user_full_name=secretary.full_name,
        )
        db.session.add(taxpayer)
        db.session.commit()
        return SimpleNamespace(id=taxpayer.id, tin=taxpayer.tin)


@pytest.fixture()
def create_sale(client):
    def _create(taxpayer, **overrides):
        payload = {
            "tin_id": taxpayer.id,
            "tax_month": "2024-03",
            "tax_type": "vat",
            "gross_taxable": "1,120,000.00",
            "invoice_number": "INV-001",
        }
        payload.update(overrides)
        resp = client.post("/api/sales", json=payload)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()

    return _create
