"""
CRUD flows: TIN library, sales, purchases, purchase categories and users.

Verifies:
- Unique TIN per type and unique category names answer 409
- Area scoping of sales (admins/secretaries see their own area only)
- Remarks add / edit / delete and the bulk remarks endpoint
- Purchases get-or-create their purchases-type TIN library entry
- Default categories are protected
- Exports stream .xlsx files with the selected columns
"""

import io
import json

import openpyxl
import pytest

from lrsync.extensions import db
from lrsync.models import Notification, PurchaseCategory, Sale, TaxpayerListing
from lrsync.seed import DEFAULT_PURCHASE_CATEGORIES, seed_purchase_categories

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# =============================================================================
# TIN LIBRARY
# =============================================================================


class TestTaxpayers:
    def test_create_normalizes_tin(self, client, secretary, login):
        login(secretary)
        resp = client.post(
            "/api/taxpayers",
            json={"tin": "123-456-789-000", "registered_name": "Acme Realty", "type": "sales"},
        )
        assert resp.status_code == 201
        assert resp.get_json()["tin"] == "123456789000"

    def test_duplicate_tin_and_type_conflicts(self, client, secretary, login):
        login(secretary)
        payload = {"tin": "123456789", "registered_name": "Acme", "type": "sales"}
        assert client.post("/api/taxpayers", json=payload).status_code == 201

        resp = client.post("/api/taxpayers", json=dict(payload, registered_name="Acme Again"))
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "A taxpayer with this TIN and type already exists."

        # same TIN, other type is a different listing
        assert client.post("/api/taxpayers", json=dict(payload, type="purchases")).status_code == 201

    def test_update_into_existing_tin_conflicts(self, client, secretary, login):
        login(secretary)
        client.post("/api/taxpayers", json={"tin": "111", "registered_name": "A"})
        second = client.post("/api/taxpayers", json={"tin": "222", "registered_name": "B"}).get_json()

        resp = client.put(f"/api/taxpayers/{second['id']}", json={"tin": "111"})
        assert resp.status_code == 409

    def test_registered_name_required(self, client, secretary, login):
        login(secretary)
        resp = client.post("/api/taxpayers", json={"tin": "123"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Registered name is required."

    def test_suggestions_by_tin_prefix_and_name(self, client, secretary, login, sales_taxpayer):
        login(secretary)
        by_tin = client.get("/api/taxpayers/suggestions?q=1234").get_json()["items"]
        by_name = client.get("/api/taxpayers/suggestions?q=realty").get_json()["items"]
        assert [t["id"] for t in by_tin] == [sales_taxpayer.id]
        assert [t["id"] for t in by_name] == [sales_taxpayer.id]
        assert client.get("/api/taxpayers/suggestions?q=999").get_json()["items"] == []

    def test_delete_is_hard(self, client, secretary, login, sales_taxpayer, app):
        login(secretary)
        assert client.delete(f"/api/taxpayers/{sales_taxpayer.id}").status_code == 200
        with app.app_context():
            assert db.session.get(TaxpayerListing, sales_taxpayer.id) is None


# =============================================================================
# SALES
# =============================================================================


class TestSales:
    def test_create_from_tin_library(self, client, secretary, login, sales_taxpayer, create_sale):
        login(secretary)
        sale = create_sale(sales_taxpayer, cheque=["https://test-bucket/x/cheque.pdf"])

        assert sale["tin"] == "123456789000"
        assert sale["name"] == "Acme Realty Corp"
        assert sale["tax_month"] == "2024-03-01"
        assert sale["gross_taxable"] == 1120000.0
        assert sale["total_actual_amount"] == 1120000.0
        assert sale["user_uuid"] == secretary.uuid

        listed = client.get("/api/sales").get_json()
        assert listed["total"] == 1
        assert listed["items"][0]["files_count"] == 1
        assert listed["items"][0]["user_assigned_area"] == "Cebu"
        assert listed["items"][0]["commission"] is None

    def test_create_requires_library_entry(self, client, secretary, login):
        login(secretary)
        resp = client.post(
            "/api/sales",
            json={"tin": "000", "tax_month": "2024-03", "tax_type": "vat", "gross_taxable": "1"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Select a taxpayer from the TIN library."

    @pytest.mark.parametrize(
        "override,message",
        [
            ({"tax_type": "zero-rated"}, "Tax type must be 'vat' or 'non-vat'."),
            ({"gross_taxable": "-5"}, "Gross taxable must be a non-negative amount."),
            ({"tax_month": "March"}, "Tax month is required."),
            ({"voucher": "not-a-list"}, "voucher must be a list of URLs."),
        ],
    )
    def test_validation(self, client, secretary, login, sales_taxpayer, override, message):
        login(secretary)
        payload = {"tin_id": sales_taxpayer.id, "tax_month": "2024-03", "tax_type": "vat", "gross_taxable": "1"}
        payload.update(override)
        resp = client.post("/api/sales", json=payload)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == message

    def test_filters(self, client, secretary, login, sales_taxpayer, create_sale):
        login(secretary)
        create_sale(sales_taxpayer, tax_month="2024-03", tax_type="vat")
        create_sale(sales_taxpayer, tax_month="2024-04", tax_type="non-vat", invoice_number="OR-SPECIAL")

        assert client.get("/api/sales?tax_month=2024-04").get_json()["total"] == 1
        assert client.get("/api/sales?tax_type=vat").get_json()["total"] == 1
        assert client.get("/api/sales?search=special").get_json()["total"] == 1
        assert client.get("/api/sales?tax_month=all").get_json()["total"] == 2

    def test_area_scoping(self, client, secretary, other_secretary, admin, login, sales_taxpayer, create_sale):
        login(secretary)
        sale = create_sale(sales_taxpayer)

        login(other_secretary)
        assert client.get("/api/sales").get_json()["total"] == 0
        assert client.get(f"/api/sales/{sale['id']}").status_code == 403
        assert client.put(f"/api/sales/{sale['id']}", json={"invoice_number": "X"}).status_code == 403

        login(admin)
        assert client.get("/api/sales").get_json()["total"] == 1
        assert client.get(f"/api/sales/{sale['id']}").status_code == 200

    def test_update_and_soft_delete(self, client, secretary, login, sales_taxpayer, create_sale, app):
        login(secretary)
        sale = create_sale(sales_taxpayer)

        resp = client.put(f"/api/sales/{sale['id']}", json={"invoice_number": "INV-777", "pickup_date": "2024-03-20"})
        assert resp.status_code == 200
        assert resp.get_json()["invoice_number"] == "INV-777"
        assert resp.get_json()["pickup_date"] == "2024-03-20"

        assert client.delete(f"/api/sales/{sale['id']}").status_code == 200
        assert client.get(f"/api/sales/{sale['id']}").status_code == 404
        with app.app_context():
            assert db.session.get(Sale, sale["id"]).is_deleted is True
            actions = {n.action for n in Notification.query.all()}
            assert {"sale_created", "sale_updated", "sale_deleted"} <= actions

    def test_remarks_lifecycle(self, client, secretary, login, sales_taxpayer, create_sale):
        login(secretary)
        sale = create_sale(sales_taxpayer, remark="initial check")
        url = f"/api/sales/{sale['id']}/remarks"

        remarks = client.post(url, json={"remark": "deposit slip missing"}).get_json()["remarks"]
        assert [r["remark"] for r in remarks] == ["initial check", "deposit slip missing"]
        assert remarks[1]["name"] == secretary.full_name

        remarks = client.put(url, json={"target": remarks[1], "remark": "deposit slip received"}).get_json()["remarks"]
        assert remarks[1]["remark"] == "deposit slip received"

        remarks = client.delete(url, json={"target": remarks[0]}).get_json()["remarks"]
        assert [r["remark"] for r in remarks] == ["deposit slip received"]

        assert client.post(url, json={"remark": "  "}).status_code == 400
        assert client.put(url, json={"remark": "x"}).status_code == 400

    def test_bulk_remarks_by_uuid(self, client, secretary, login, sales_taxpayer, create_sale, app):
        login(secretary)
        sale = create_sale(sales_taxpayer)
        remarks = [{"remark": "ok", "name": "Ana", "uuid": "p1", "date": "2024-03-01T00:00:00"}]

        resp = client.post("/api/update-sale-remarks", json={"saleId": sale["uuid"], "remarks": remarks})
        assert resp.get_json() == {"success": True}
        with app.app_context():
            assert json.loads(db.session.get(Sale, sale["id"]).remarks) == remarks

        assert client.post("/api/update-sale-remarks", json={"remarks": []}).status_code == 400
        assert client.post("/api/update-sale-remarks", json={"saleId": "nope", "remarks": []}).status_code == 404

    @pytest.mark.parametrize(
        "entry,message",
        [
            ("just text", "Remark 1 must be an object."),
            ({"remark": "ok", "name": "Ana"}, "Remark 1 is missing uuid, date."),
            ({"remark": " ", "name": "Ana", "uuid": "p1", "date": "2024-03-01"}, "Remark 1 is empty."),
        ],
    )
    def test_bulk_remarks_rejects_malformed_entries(
        self, client, secretary, login, sales_taxpayer, create_sale, app, entry, message
    ):
        login(secretary)
        sale = create_sale(sales_taxpayer)

        resp = client.post("/api/update-sale-remarks", json={"saleId": sale["uuid"], "remarks": [entry]})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == message
        with app.app_context():
            assert db.session.get(Sale, sale["id"]).remarks is None

    def test_custom_export(self, client, secretary, login, sales_taxpayer, create_sale):
        login(secretary)
        create_sale(sales_taxpayer)

        resp = client.get("/api/sales/export?fields=tin,name,gross_taxable")
        assert resp.status_code == 200
        assert resp.mimetype == XLSX
        ws = openpyxl.load_workbook(io.BytesIO(resp.data)).active
        assert [c.value for c in ws[6]] == ["TIN", "Name", "Gross Taxable"]
        assert [c.value for c in ws[7]] == ["123-456-789-000", "Acme Realty Corp", 1120000]

        assert client.get("/api/sales/export?fields=tin,secret").status_code == 400


# =============================================================================
# PURCHASES
# =============================================================================


class TestPurchases:
    def _payload(self, **overrides):
        payload = {
            "tin": "555-666-777",
            "name": "Office Depot",
            "tax_month": "2024-04",
            "tax_type": "vat",
            "gross_taxable": "500.00",
            "official_receipt": ["https://test-bucket/lrsync/purchases/OR%201.pdf"],
        }
        payload.update(overrides)
        return payload

    def test_create_reuses_purchases_listing(self, client, secretary, login, app):
        login(secretary)
        with app.app_context():
            seed_purchase_categories()
            category_id = PurchaseCategory.query.filter_by(category="Utilities").one().id

        first = client.post("/api/purchases", json=self._payload(category_id=category_id))
        second = client.post("/api/purchases", json=self._payload(gross_taxable="20"))
        assert first.status_code == 201 and second.status_code == 201
        assert first.get_json()["category_name"] == "Utilities"
        assert first.get_json()["tin_id"] == second.get_json()["tin_id"]

        with app.app_context():
            listing = TaxpayerListing.query.filter_by(tin="555666777").one()
            assert listing.type == "purchases"
            assert listing.registered_name == "Office Depot"

        listed = client.get("/api/purchases").get_json()
        assert listed["total"] == 2
        assert listed["items"][0]["files_count"] == 1

    def test_unknown_category_rejected(self, client, secretary, login):
        login(secretary)
        resp = client.post("/api/purchases", json=self._payload(category_id=999))
        assert resp.status_code == 400

    def test_report_export(self, client, secretary, login):
        login(secretary)
        client.post("/api/purchases", json=self._payload())
        resp = client.get("/api/purchases/export/report")
        assert resp.status_code == 200
        ws = openpyxl.load_workbook(io.BytesIO(resp.data)).active
        assert ws["A1"].value == "PURCHASES MANAGEMENT REPORT"
        assert ws["B6"].value == 1

    def test_soft_delete(self, client, secretary, login):
        login(secretary)
        purchase = client.post("/api/purchases", json=self._payload()).get_json()
        assert client.delete(f"/api/purchases/{purchase['id']}").status_code == 200
        assert client.get("/api/purchases").get_json()["total"] == 0


# =============================================================================
# PURCHASE CATEGORIES
# =============================================================================


class TestCategories:
    def test_seed_is_idempotent(self, app):
        with app.app_context():
            assert seed_purchase_categories() == len(DEFAULT_PURCHASE_CATEGORIES)
            assert seed_purchase_categories() == 0

    def test_defaults_are_protected(self, client, super_admin, login, app):
        with app.app_context():
            seed_purchase_categories()
            default_id = PurchaseCategory.query.filter_by(category="Rent").one().id
        login(super_admin)

        resp = client.put(f"/api/categories/{default_id}", json={"category": "Lease"})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Default categories cannot be edited."
        resp = client.delete(f"/api/categories/{default_id}")
        assert resp.get_json()["error"] == "Default categories cannot be deleted."

    def test_custom_category_lifecycle(self, client, super_admin, login):
        login(super_admin)
        created = client.post("/api/categories", json={"category": "Software"})
        assert created.status_code == 201
        assert client.post("/api/categories", json={"category": "Software"}).status_code == 409

        cat_id = created.get_json()["id"]
        assert client.put(f"/api/categories/{cat_id}", json={"category": "Software Licenses"}).status_code == 200
        assert client.delete(f"/api/categories/{cat_id}").status_code == 200
        names = [c["category"] for c in client.get("/api/categories").get_json()["items"]]
        assert "Software Licenses" not in names

        # re-adding a soft-deleted name restores it
        restored = client.post("/api/categories", json={"category": "Software Licenses"})
        assert restored.status_code == 201
        assert restored.get_json()["id"] == cat_id

    def test_secretary_cannot_manage(self, client, secretary, login):
        login(secretary)
        assert client.post("/api/categories", json={"category": "X"}).status_code == 403
        assert client.get("/api/categories").status_code == 200


# =============================================================================
# USERS
# =============================================================================


class TestUsers:
    def test_super_admin_creates_user(self, client, super_admin, login):
        login(super_admin)
        payload = {
            "email": "New.User@lrsync.test",
            "password": "abcdef",
            "first_name": "New",
            "last_name": "User",
            "role": "admin",
            "assigned_area": "Iloilo",
        }
        resp = client.post("/api/users", json=payload)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["email"] == "new.user@lrsync.test"
        assert body["full_name"] == "New User"

        assert client.post("/api/users", json=payload).status_code == 409
        assert client.post("/api/users", json=dict(payload, email="x@y.z", password="123")).status_code == 400

    def test_admin_limited_to_secretaries_in_own_area(self, client, admin, super_admin, other_secretary, login):
        login(admin)
        resp = client.post(
            "/api/users", json={"email": "a2@lrsync.test", "password": "abcdef", "role": "admin"}
        )
        assert resp.status_code == 403

        resp = client.post(
            "/api/users",
            json={"email": "s2@lrsync.test", "password": "abcdef", "role": "secretary", "assigned_area": "Davao"},
        )
        assert resp.status_code == 201
        assert resp.get_json()["assigned_area"] == "Cebu"

        emails = {u["email"] for u in client.get("/api/users").get_json()["items"]}
        assert emails == {"admin@lrsync.test", "s2@lrsync.test"}

    def test_cannot_deactivate_self(self, client, super_admin, login):
        login(super_admin)
        resp = client.put(f"/api/users/{super_admin.profile_id}/status", json={"status": "inactive"})
        assert resp.status_code == 400
