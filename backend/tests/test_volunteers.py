"""Tests for volunteer activity logging, stats and reports."""

from datetime import date, timedelta

import pytest

from equiploan.database import utcnow
from equiploan.models.user import UserRole
from equiploan.models.volunteer_activity import DEFAULT_ACTIVITY_TYPES, VolunteerActivity

from conftest import auth_headers_for

VOLUNTEER_PERMISSIONS = ("volunteer:create", "volunteer:read", "volunteer:update", "volunteer:stats")


@pytest.fixture
def make_volunteer(make_user):
    async def _make(**fields):
        return await make_user(*VOLUNTEER_PERMISSIONS, role=UserRole.VOLUNTEER, **fields)

    return _make


def _activity(**overrides) -> dict:
    body = {
        "activity_type": "Maintenance and repair",
        "description": "Fixed two wheelchairs",
        "hours": 2.5,
        "date": utcnow().date().isoformat(),
    }
    body.update(overrides)
    return body


@pytest.mark.integration
class TestLogging:

    async def test_volunteer_logs_own_activity(self, client, make_volunteer):
        volunteer = await make_volunteer()

        response = await client.post(
            "/api/volunteers/activities", json=_activity(), headers=auth_headers_for(volunteer)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["volunteer_id"] == volunteer.id
        assert data["hours"] == 2.5
        assert data["volunteer"]["id"] == volunteer.id

    async def test_volunteer_cannot_log_for_someone_else(self, client, make_volunteer):
        volunteer = await make_volunteer()
        other = await make_volunteer()

        response = await client.post(
            "/api/volunteers/activities",
            json=_activity(volunteer_id=other.id),
            headers=auth_headers_for(volunteer),
        )

        assert response.status_code == 403

    async def test_admin_logs_for_volunteer(self, client, admin_headers, make_volunteer):
        volunteer = await make_volunteer()
        response = await client.post(
            "/api/volunteers/activities", json=_activity(volunteer_id=volunteer.id), headers=admin_headers
        )
        assert response.status_code == 201

    async def test_target_must_be_a_volunteer(self, client, admin_headers, make_user):
        worker = await make_user(role=UserRole.WORKER)
        response = await client.post(
            "/api/volunteers/activities", json=_activity(volunteer_id=worker.id), headers=admin_headers
        )
        assert response.status_code == 404

    @pytest.mark.parametrize("hours", [0, 0.05, 24.5, 25, -1])
    async def test_hours_out_of_range(self, client, make_volunteer, hours):
        volunteer = await make_volunteer()

        response = await client.post(
            "/api/volunteers/activities", json=_activity(hours=hours), headers=auth_headers_for(volunteer)
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "hours must be between 0.1 and 24"

    @pytest.mark.parametrize("hours", [0.1, 24])
    async def test_hours_bounds_are_inclusive(self, client, make_volunteer, hours):
        volunteer = await make_volunteer()
        response = await client.post(
            "/api/volunteers/activities", json=_activity(hours=hours), headers=auth_headers_for(volunteer)
        )
        assert response.status_code == 201

    async def test_future_date_is_rejected(self, client, make_volunteer):
        volunteer = await make_volunteer()
        tomorrow = (utcnow().date() + timedelta(days=2)).isoformat()

        response = await client.post(
            "/api/volunteers/activities", json=_activity(date=tomorrow), headers=auth_headers_for(volunteer)
        )

        assert response.status_code == 400

    async def test_update_applies_the_same_hours_bound(self, client, make_volunteer):
        volunteer = await make_volunteer()
        headers = auth_headers_for(volunteer)
        activity_id = (await client.post("/api/volunteers/activities", json=_activity(), headers=headers)).json()["id"]

        bad = await client.put(f"/api/volunteers/activities/{activity_id}", json={"hours": 30}, headers=headers)
        assert bad.status_code == 400

        good = await client.put(f"/api/volunteers/activities/{activity_id}", json={"hours": 4}, headers=headers)
        assert good.status_code == 200
        assert good.json()["hours"] == 4

    @pytest.mark.parametrize("field", ["hours", "date", "activity_type", "description", "volunteer_id"])
    async def test_update_rejects_null_for_required_fields(self, client, make_volunteer, field):
        volunteer = await make_volunteer()
        headers = auth_headers_for(volunteer)
        activity_id = (await client.post("/api/volunteers/activities", json=_activity(), headers=headers)).json()["id"]

        response = await client.put(
            f"/api/volunteers/activities/{activity_id}", json={field: None}, headers=headers
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_update_can_clear_notes(self, client, make_volunteer):
        volunteer = await make_volunteer()
        headers = auth_headers_for(volunteer)
        activity_id = (await client.post(
            "/api/volunteers/activities", json=_activity(notes="bring tools"), headers=headers
        )).json()["id"]

        response = await client.put(f"/api/volunteers/activities/{activity_id}", json={"notes": None}, headers=headers)

        assert response.status_code == 200
        assert response.json()["notes"] is None


@pytest.mark.integration
class TestVisibility:

    async def test_volunteers_only_see_their_own(self, client, admin_headers, make_volunteer):
        alice = await make_volunteer(first_name="Alice")
        bob = await make_volunteer(first_name="Bob")
        await client.post("/api/volunteers/activities", json=_activity(), headers=auth_headers_for(alice))
        bob_activity = (await client.post(
            "/api/volunteers/activities", json=_activity(), headers=auth_headers_for(bob)
        )).json()

        mine = (await client.get("/api/volunteers/activities", headers=auth_headers_for(alice))).json()
        assert mine["total"] == 1
        assert mine["items"][0]["volunteer_id"] == alice.id

        hidden = await client.get(
            f"/api/volunteers/activities/{bob_activity['id']}", headers=auth_headers_for(alice)
        )
        assert hidden.status_code == 404

        everyone = (await client.get("/api/volunteers/activities", headers=admin_headers)).json()
        assert everyone["total"] == 2

    async def test_delete(self, client, admin_headers, make_volunteer):
        volunteer = await make_volunteer()
        activity_id = (await client.post(
            "/api/volunteers/activities", json=_activity(), headers=auth_headers_for(volunteer)
        )).json()["id"]

        response = await client.delete(f"/api/volunteers/activities/{activity_id}", headers=admin_headers)

        assert response.status_code == 204

    async def test_activity_types_merge_recorded_values(self, client, admin_headers, make_volunteer):
        volunteer = await make_volunteer()
        await client.post(
            "/api/volunteers/activities",
            json=_activity(activity_type="Fundraising"),
            headers=auth_headers_for(volunteer),
        )

        types = (await client.get("/api/volunteers/activity-types", headers=admin_headers)).json()

        assert types[:len(DEFAULT_ACTIVITY_TYPES)] == list(DEFAULT_ACTIVITY_TYPES)
        assert "Fundraising" in types


@pytest.mark.integration
class TestStatsAndReports:

    async def _seed(self, db_session, volunteer_id: str) -> None:
        db_session.add_all([
            VolunteerActivity(volunteer_id=volunteer_id, activity_type="Office help",
                              description="Filing", hours=2.0, date=date(2024, 1, 10)),
            VolunteerActivity(volunteer_id=volunteer_id, activity_type="Office help",
                              description="Phones", hours=3.0, date=date(2024, 1, 20)),
            VolunteerActivity(volunteer_id=volunteer_id, activity_type="Technical support",
                              description="Laptop setup", hours=1.5, date=date(2024, 2, 5)),
        ])
        await db_session.commit()

    async def test_volunteer_stats(self, client, make_volunteer, db_session):
        volunteer = await make_volunteer(first_name="Maya", last_name="Golan")
        await self._seed(db_session, volunteer.id)

        response = await client.get(
            f"/api/volunteers/{volunteer.id}/stats", headers=auth_headers_for(volunteer)
        )

        assert response.status_code == 200
        stats = response.json()
        assert stats["volunteer_name"] == "Maya Golan"
        assert stats["total_hours"] == 6.5
        assert stats["total_activities"] == 3
        assert stats["average_hours"] == 2.17
        assert stats["activities_by_type"]["Office help"] == {"count": 2, "hours": 5.0}
        assert stats["monthly_breakdown"] == [
            {"month": "2024-01", "count": 2, "hours": 5.0},
            {"month": "2024-02", "count": 1, "hours": 1.5},
        ]
        assert stats["first_activity_date"] == "2024-01-10"
        assert stats["last_activity_date"] == "2024-02-05"
        assert stats["recent_activities"][0]["description"] == "Laptop setup"

    async def test_volunteer_cannot_see_others_stats(self, client, make_volunteer):
        volunteer = await make_volunteer()
        other = await make_volunteer()

        response = await client.get(f"/api/volunteers/{other.id}/stats", headers=auth_headers_for(volunteer))

        assert response.status_code == 403

    async def test_reports(self, client, admin_headers, make_volunteer, db_session):
        volunteer = await make_volunteer(first_name="Maya", last_name="Golan")
        await self._seed(db_session, volunteer.id)

        summary = (await client.get("/api/volunteers/reports", headers=admin_headers)).json()
        assert summary["summary"]["total_hours"] == 6.5
        assert summary["summary"]["active_volunteers"] == 1
        assert summary["rows"] == []

        by_activity = (await client.get(
            "/api/volunteers/reports?report_type=by_activity", headers=admin_headers
        )).json()
        assert by_activity["rows"] == [
            {"activity_type": "Office help", "count": 2, "hours": 5.0},
            {"activity_type": "Technical support", "count": 1, "hours": 1.5},
        ]

        january = (await client.get(
            "/api/volunteers/reports?report_type=detailed&start_date=2024-01-01&end_date=2024-01-31",
            headers=admin_headers,
        )).json()
        assert january["rows"] == [{
            "volunteer_id": volunteer.id,
            "volunteer_name": "Maya Golan",
            "total_hours": 5.0,
            "total_activities": 2,
        }]

    async def test_unknown_report_type_is_400(self, client, admin_headers):
        response = await client.get("/api/volunteers/reports?report_type=weekly", headers=admin_headers)
        assert response.status_code == 400

    async def test_reports_require_volunteer_reports(self, client, make_volunteer):
        volunteer = await make_volunteer()
        response = await client.get("/api/volunteers/reports", headers=auth_headers_for(volunteer))
        assert response.status_code == 403
