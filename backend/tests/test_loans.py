"""Tests for the loan lifecycle endpoints."""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from equiploan.database import utcnow
from equiploan.models.loan import Loan, LoanEvent, LoanStatus
from equiploan.models.product import ProductInstance
from equiploan.models.user import UserRole
from equiploan.services.loans import lock_instance, lock_user

from conftest import auth_headers_for


async def _create_loan(client: AsyncClient, headers: dict, user_id: str, instance_id: str, **extra):
    return await client.post(
        "/api/loans",
        json={"user_id": user_id, "product_instance_id": instance_id, **extra},
        headers=headers,
    )


@pytest.mark.integration
class TestCreateLoan:

    async def test_create_loan(self, client, admin_headers, make_user, make_instance, db_session):
        borrower = await make_user(email="borrower@example.com", role=UserRole.CLIENT)
        instance = await make_instance()

        response = await _create_loan(client, admin_headers, borrower.id, instance.id, notes="front desk")

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "ACTIVE"
        assert data["user"]["email"] == "borrower@example.com"
        assert data["product_instance"]["barcode"] == instance.barcode
        assert data["product_instance"]["product"]["name"] == "Wheelchair"
        assert data["is_overdue"] is False
        assert data["days_overdue"] == 0

        refreshed = await db_session.get(ProductInstance, instance.id, populate_existing=True)
        assert refreshed.is_available is False

        events = (await db_session.execute(select(LoanEvent))).scalars().all()
        assert [e.kind for e in events] == ["created"]

    async def test_unknown_user_is_404(self, client, admin_headers, make_instance):
        instance = await make_instance()
        response = await _create_loan(client, admin_headers, "missing-user", instance.id)
        assert response.status_code == 404

    async def test_inactive_user_is_404(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user(is_active=False)
        instance = await make_instance()
        response = await _create_loan(client, admin_headers, borrower.id, instance.id)
        assert response.status_code == 404

    async def test_unknown_instance_is_404(self, client, admin_headers, make_user):
        borrower = await make_user()
        response = await _create_loan(client, admin_headers, borrower.id, "missing-instance")
        assert response.status_code == 404

    async def test_instance_already_on_loan(self, client, admin_headers, make_user, make_instance):
        first = await make_user()
        second = await make_user()
        instance = await make_instance()

        assert (await _create_loan(client, admin_headers, first.id, instance.id)).status_code == 201
        response = await _create_loan(client, admin_headers, second.id, instance.id)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    async def test_unavailable_instance(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instance = await make_instance(is_available=False)

        response = await _create_loan(client, admin_headers, borrower.id, instance.id)

        assert response.status_code == 409
        assert "not available" in response.json()["error"]["message"]

    async def test_fourth_active_loan_is_rejected(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instances = [await make_instance() for _ in range(4)]

        for instance in instances[:3]:
            assert (await _create_loan(client, admin_headers, borrower.id, instance.id)).status_code == 201

        response = await _create_loan(client, admin_headers, borrower.id, instances[3].id)

        assert response.status_code == 409
        assert "maximum of 3" in response.json()["error"]["message"]

    async def test_returned_loans_free_a_slot(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instances = [await make_instance() for _ in range(4)]
        loan_ids = []
        for instance in instances[:3]:
            loan_ids.append((await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"])

        await client.patch(f"/api/loans/{loan_ids[0]}/return", headers=admin_headers)
        response = await _create_loan(client, admin_headers, borrower.id, instances[3].id)

        assert response.status_code == 201

    async def test_requires_loan_create(self, client, make_user, make_instance):
        reader = await make_user("loan:read")
        instance = await make_instance()

        response = await _create_loan(client, auth_headers_for(reader), reader.id, instance.id)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"
        assert "loan:create" in response.json()["error"]["message"]


@pytest.mark.unit
class TestCreationLocks:
    """Row locks taken before the availability and ceiling checks.

    SQLite drops FOR UPDATE, so the guarantee against concurrent creates only
    holds on PostgreSQL. These tests check the statements the service issues.
    """

    def test_borrower_row_is_locked(self):
        sql = str(lock_user("u1").compile(dialect=postgresql.dialect()))
        assert sql.rstrip().endswith("FOR UPDATE")
        assert "FROM users" in sql

    def test_instance_row_is_locked(self):
        sql = str(lock_instance("pi1").compile(dialect=postgresql.dialect()))
        assert sql.rstrip().endswith("FOR UPDATE")
        assert "FROM product_instances" in sql


@pytest.mark.integration
class TestTransitions:

    async def test_return_by_id(self, client, admin_headers, make_user, make_instance, db_session):
        borrower = await make_user()
        instance = await make_instance()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"]

        response = await client.patch(
            f"/api/loans/{loan_id}/return",
            json={"notes": "all good", "return_condition": "fair"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "RETURNED"
        assert data["actual_return_date"] is not None
        assert "Returned: all good" in data["notes"]

        refreshed = await db_session.get(ProductInstance, instance.id, populate_existing=True)
        assert refreshed.is_available is True
        assert refreshed.condition == "fair"

    async def test_return_by_body(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instance = await make_instance()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"]

        response = await client.patch(
            "/api/loans/return",
            json={"loan_id": loan_id, "return_condition": "good", "return_notes": "scratched"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "RETURNED"
        assert "scratched" in response.json()["notes"]

    async def test_double_return_is_400(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instance = await make_instance()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"]

        await client.patch(f"/api/loans/{loan_id}/return", headers=admin_headers)
        response = await client.patch(f"/api/loans/{loan_id}/return", headers=admin_headers)

        assert response.status_code == 400
        assert "not active" in response.json()["error"]["message"]

    async def test_return_missing_loan_is_404(self, client, admin_headers):
        response = await client.patch("/api/loans/nope/return", headers=admin_headers)
        assert response.status_code == 404

    async def test_mark_lost(self, client, admin_headers, make_user, make_instance, db_session):
        borrower = await make_user()
        instance = await make_instance()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"]

        response = await client.patch(
            f"/api/loans/{loan_id}/mark-lost", json={"notes": "never came back"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "LOST"
        assert "Lost: never came back" in response.json()["notes"]
        refreshed = await db_session.get(ProductInstance, instance.id, populate_existing=True)
        assert refreshed.is_available is False

        again = await client.patch(f"/api/loans/{loan_id}/mark-lost", headers=admin_headers)
        assert again.status_code == 400

    async def test_update_into_and_out_of_returned(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instance = await make_instance()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"]

        returned = await client.put(f"/api/loans/{loan_id}", json={"status": "RETURNED"}, headers=admin_headers)
        assert returned.json()["actual_return_date"] is not None

        reopened = await client.put(f"/api/loans/{loan_id}", json={"status": "ACTIVE"}, headers=admin_headers)
        assert reopened.json()["status"] == "ACTIVE"
        assert reopened.json()["actual_return_date"] is None

    async def test_update_rejects_null_status(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instance = await make_instance()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"]

        response = await client.put(f"/api/loans/{loan_id}", json={"status": None}, headers=admin_headers)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_update_can_clear_the_due_date(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instance = await make_instance()
        due = (utcnow() + timedelta(days=7)).isoformat()
        loan_id = (await _create_loan(
            client, admin_headers, borrower.id, instance.id, expected_return_date=due
        )).json()["id"]

        response = await client.put(
            f"/api/loans/{loan_id}", json={"expected_return_date": None}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["expected_return_date"] is None

    async def test_history_lists_events_in_order(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        instance = await make_instance()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, instance.id)).json()["id"]
        await client.put(f"/api/loans/{loan_id}", json={"notes": "extended"}, headers=admin_headers)
        await client.patch(f"/api/loans/{loan_id}/return", headers=admin_headers)

        response = await client.get(f"/api/loans/{loan_id}/events", headers=admin_headers)

        assert response.status_code == 200
        assert [e["kind"] for e in response.json()] == ["created", "updated", "returned"]


@pytest.mark.integration
class TestOverdue:

    async def _past_due_loan(self, db_session, make_user, make_instance, days: int = 3) -> Loan:
        borrower = await make_user(first_name="Dana", last_name="Levi")
        instance = await make_instance(is_available=False)
        loan = Loan(
            user_id=borrower.id,
            product_instance_id=instance.id,
            status=LoanStatus.ACTIVE,
            loan_date=utcnow() - timedelta(days=days + 7),
            expected_return_date=utcnow() - timedelta(days=days),
        )
        db_session.add(loan)
        await db_session.commit()
        return loan

    async def test_read_sweeps_past_due_loans(self, client, admin_headers, db_session, make_user, make_instance):
        loan = await self._past_due_loan(db_session, make_user, make_instance)

        response = await client.get(f"/api/loans/{loan.id}", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OVERDUE"
        assert data["is_overdue"] is True
        assert data["days_overdue"] >= 3

    async def test_loans_without_due_date_are_never_swept(
        self, client, admin_headers, db_session, make_user, make_instance
    ):
        borrower = await make_user()
        instance = await make_instance(is_available=False)
        loan = Loan(
            user_id=borrower.id,
            product_instance_id=instance.id,
            loan_date=utcnow() - timedelta(days=400),
        )
        db_session.add(loan)
        await db_session.commit()

        response = await client.get(f"/api/loans/{loan.id}", headers=admin_headers)

        assert response.json()["status"] == "ACTIVE"
        assert response.json()["is_overdue"] is False

    async def test_overdue_list_and_stats(self, client, admin_headers, db_session, make_user, make_instance):
        loan = await self._past_due_loan(db_session, make_user, make_instance)

        overdue = await client.get("/api/loans/overdue", headers=admin_headers)
        assert [l["id"] for l in overdue.json()] == [loan.id]

        stats = (await client.get("/api/loans/stats", headers=admin_headers)).json()
        assert stats["total_overdue"] == 1
        assert stats["total_active"] == 0
        assert stats["loans_by_category"] == [{"category": "Mobility", "count": 1}]
        assert stats["overdue_by_user"][0]["user_name"] == "Dana Levi"

    async def test_overdue_loan_can_be_returned(self, client, admin_headers, db_session, make_user, make_instance):
        loan = await self._past_due_loan(db_session, make_user, make_instance)

        response = await client.patch(f"/api/loans/{loan.id}/return", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "RETURNED"


@pytest.mark.integration
class TestLoanQueries:

    async def test_list_filters_and_paginates(self, client, admin_headers, make_user, make_instance, make_product):
        borrower = await make_user(first_name="Noa")
        other = await make_user(first_name="Avi")
        beds = await make_product(name="Hospital bed", category="Beds")
        await _create_loan(client, admin_headers, borrower.id, (await make_instance()).id)
        await _create_loan(client, admin_headers, other.id, (await make_instance(beds)).id)

        by_user = await client.get(f"/api/loans?user_id={borrower.id}", headers=admin_headers)
        assert by_user.json()["total"] == 1

        by_category = await client.get("/api/loans?product_category=beds", headers=admin_headers)
        assert [l["user_id"] for l in by_category.json()["items"]] == [other.id]

        by_search = await client.get("/api/loans?search=noa", headers=admin_headers)
        assert by_search.json()["total"] == 1

        paged = await client.get("/api/loans?limit=1&page=2", headers=admin_headers)
        body = paged.json()
        assert body["page"] == 2
        assert body["total_pages"] == 2
        assert len(body["items"]) == 1

    async def test_unknown_sort_field_is_400(self, client, admin_headers):
        response = await client.get("/api/loans?sort_by=password", headers=admin_headers)
        assert response.status_code == 400

    async def test_my_loans_needs_only_a_token(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        await _create_loan(client, admin_headers, borrower.id, (await make_instance()).id)

        response = await client.get("/api/loans/my-loans", headers=auth_headers_for(borrower))

        assert response.status_code == 200
        assert len(response.json()) == 1

    async def test_my_loans_without_token_is_401(self, client):
        response = await client.get("/api/loans/my-loans")
        assert response.status_code == 401

    async def test_active_loans_for_user(self, client, admin_headers, make_user, make_instance):
        borrower = await make_user()
        loan_id = (await _create_loan(client, admin_headers, borrower.id, (await make_instance()).id)).json()["id"]
        await _create_loan(client, admin_headers, borrower.id, (await make_instance()).id)
        await client.patch(f"/api/loans/{loan_id}/return", headers=admin_headers)

        response = await client.get(f"/api/loans/user/{borrower.id}", headers=admin_headers)

        assert len(response.json()) == 1
        assert response.json()[0]["status"] == "ACTIVE"
