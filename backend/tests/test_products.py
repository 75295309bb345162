"""Tests for the equipment catalog endpoints."""

import pytest

from equiploan.models.loan import Loan, LoanStatus
from equiploan.models.product import Product

from conftest import auth_headers_for


@pytest.mark.integration
class TestProducts:

    async def test_create_and_counts(self, client, admin, admin_headers, make_instance, db_session):
        response = await client.post(
            "/api/products",
            json={"name": "Shower chair", "category": "Bathroom", "manufacturer": "Invacare"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        product = response.json()
        assert product["total_instances"] == 0

        orm_product = await db_session.get(Product, product["id"])
        await make_instance(orm_product)
        on_loan = await make_instance(orm_product, is_available=False)
        await make_instance(orm_product, is_available=False, condition="needs_repair")
        db_session.add(Loan(user_id=admin.id, product_instance_id=on_loan.id, status=LoanStatus.ACTIVE))
        await db_session.commit()

        fetched = (await client.get(f"/api/products/{product['id']}", headers=admin_headers)).json()
        assert fetched["total_instances"] == 3
        assert fetched["available_instances"] == 1
        assert fetched["loaned_instances"] == 1

    async def test_list_search_and_lookups(self, client, admin_headers, make_product):
        await make_product(name="Wheelchair", category="Mobility", manufacturer="Invacare")
        await make_product(name="Walker", category="Mobility", manufacturer="Drive")
        await make_product(name="Hospital bed", category="Beds")

        mobility = (await client.get("/api/products?category=mobility", headers=admin_headers)).json()
        assert mobility["total"] == 2
        assert [p["name"] for p in mobility["items"]] == ["Walker", "Wheelchair"]

        searched = (await client.get("/api/products?search=invac", headers=admin_headers)).json()
        assert [p["name"] for p in searched["items"]] == ["Wheelchair"]

        categories = (await client.get("/api/products/categories", headers=admin_headers)).json()
        assert categories == ["Beds", "Mobility"]

        manufacturers = (await client.get("/api/products/manufacturers", headers=admin_headers)).json()
        assert manufacturers == ["Drive", "Invacare"]

    async def test_update(self, client, admin_headers, make_product):
        product = await make_product()
        response = await client.put(
            f"/api/products/{product.id}", json={"model": "X-200"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["model"] == "X-200"
        assert response.json()["name"] == "Wheelchair"

    @pytest.mark.parametrize("field", ["name", "category"])
    async def test_update_rejects_null_for_required_fields(self, client, admin_headers, make_product, field):
        product = await make_product()

        response = await client.put(f"/api/products/{product.id}", json={field: None}, headers=admin_headers)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_update_can_clear_optional_fields(self, client, admin_headers, make_product):
        product = await make_product(manufacturer="Invacare")

        response = await client.put(
            f"/api/products/{product.id}", json={"manufacturer": None}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["manufacturer"] is None

    async def test_delete_unused_product(self, client, admin_headers, make_instance, make_product):
        product = await make_product()
        await make_instance(product)

        response = await client.delete(f"/api/products/{product.id}", headers=admin_headers)

        assert response.status_code == 204
        assert (await client.get(f"/api/products/{product.id}", headers=admin_headers)).status_code == 404

    async def test_delete_blocked_by_active_loan(
        self, client, admin, admin_headers, make_instance, make_product, db_session
    ):
        product = await make_product()
        instance = await make_instance(product)
        db_session.add(Loan(user_id=admin.id, product_instance_id=instance.id))
        await db_session.commit()

        response = await client.delete(f"/api/products/{product.id}", headers=admin_headers)

        assert response.status_code == 409
        assert "currently on loan" in response.json()["error"]["message"]

    async def test_delete_blocked_by_loan_history(
        self, client, admin, admin_headers, make_instance, make_product, db_session
    ):
        product = await make_product()
        instance = await make_instance(product)
        db_session.add(Loan(user_id=admin.id, product_instance_id=instance.id, status=LoanStatus.RETURNED))
        await db_session.commit()

        response = await client.delete(f"/api/products/{product.id}", headers=admin_headers)

        assert response.status_code == 409
        assert "loan history" in response.json()["error"]["message"]

    async def test_read_requires_product_read(self, client, make_user):
        user = await make_user("loan:read")
        response = await client.get("/api/products", headers=auth_headers_for(user))
        assert response.status_code == 403


@pytest.mark.integration
class TestInstances:

    async def test_create_and_get_by_barcode(self, client, admin_headers, make_product):
        product = await make_product()

        response = await client.post(
            "/api/products/instances",
            json={"product_id": product.id, "barcode": "WC-001", "location": "Warehouse A"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        created = response.json()
        assert created["condition"] == "good"
        assert created["is_available"] is True
        assert created["product"]["name"] == "Wheelchair"

        by_barcode = await client.get("/api/products/instances/barcode/WC-001", headers=admin_headers)
        assert by_barcode.json()["id"] == created["id"]
        assert by_barcode.json()["current_loan"] is None

    async def test_unknown_product_is_404(self, client, admin_headers):
        response = await client.post(
            "/api/products/instances",
            json={"product_id": "nope", "barcode": "X-1"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    async def test_duplicate_barcode_is_409(self, client, admin_headers, make_instance):
        instance = await make_instance(barcode="DUP-1")
        response = await client.post(
            "/api/products/instances",
            json={"product_id": instance.product_id, "barcode": "DUP-1"},
            headers=admin_headers,
        )
        assert response.status_code == 409

    async def test_update_barcode_conflict(self, client, admin_headers, make_instance):
        await make_instance(barcode="A-1")
        other = await make_instance(barcode="B-1")
        response = await client.put(
            f"/api/products/instances/{other.id}", json={"barcode": "A-1"}, headers=admin_headers
        )
        assert response.status_code == 409

    @pytest.mark.parametrize("field", ["product_id", "barcode", "condition", "is_available"])
    async def test_update_rejects_null_for_required_fields(self, client, admin_headers, make_instance, field):
        instance = await make_instance()

        response = await client.put(
            f"/api/products/instances/{instance.id}", json={field: None}, headers=admin_headers
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_detail_includes_current_loan(self, client, admin, admin_headers, make_instance, db_session):
        instance = await make_instance(is_available=False)
        db_session.add(Loan(user_id=admin.id, product_instance_id=instance.id))
        await db_session.commit()

        response = await client.get(f"/api/products/instances/{instance.id}", headers=admin_headers)

        loan = response.json()["current_loan"]
        assert loan["status"] == "ACTIVE"
        assert loan["user"]["email"] == admin.email

    async def test_delete_blocked_while_on_loan(self, client, admin, admin_headers, make_instance, db_session):
        instance = await make_instance(is_available=False)
        db_session.add(Loan(user_id=admin.id, product_instance_id=instance.id))
        await db_session.commit()

        response = await client.delete(f"/api/products/instances/{instance.id}", headers=admin_headers)

        assert response.status_code == 409

    async def test_list_filters_and_lookups(self, client, admin_headers, make_instance):
        await make_instance(location="Warehouse A", condition="excellent")
        await make_instance(location="Branch B", is_available=False, condition="refurbished")

        available = (await client.get("/api/products/instances?is_available=true", headers=admin_headers)).json()
        assert available["total"] == 1

        by_location = (await client.get("/api/products/instances?location=branch", headers=admin_headers)).json()
        assert by_location["items"][0]["location"] == "Branch B"

        conditions = (await client.get("/api/products/instances/conditions", headers=admin_headers)).json()
        assert conditions[:5] == ["excellent", "good", "fair", "poor", "needs_repair"]
        assert "refurbished" in conditions

        locations = (await client.get("/api/products/instances/locations", headers=admin_headers)).json()
        assert locations == ["Branch B", "Warehouse A"]
