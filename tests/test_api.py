import httpx
import pytest

from campus_platform.core.auth_utils import create_access_token
from campus_platform.core.database import get_db
from campus_platform.main import app


@pytest.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.user_id, user.role)}"}


CHAIN = {
    "name": "Semester milestones",
    "academic_year": "2025-2026",
    "year": "2nd",
    "start_date": "2026-01-05T00:00:00",
    "end_date": "2026-05-05T00:00:00",
}


class TestEnvelope:

    async def test_health(self, client):
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_missing_token(self, client):
        response = await client.get("/api/milestone-chain")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Not authorized, no token"

    async def test_bad_token(self, client):
        response = await client.get("/api/milestone-chain", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_deactivated_account(self, client, make_user):
        admin = await make_user("admin", is_active=False)
        response = await client.get("/api/milestone-chain", headers=auth(admin))
        assert response.status_code == 401

    async def test_student_cannot_create_chain(self, client, make_user):
        student = await make_user("student")
        response = await client.post("/api/milestone-chain", json=CHAIN, headers=auth(student))

        assert response.status_code == 403
        assert response.json()["action"] == "create"

    async def test_validation_errors(self, client, make_user):
        admin = await make_user("admin")
        response = await client.post("/api/milestone-chain", json={**CHAIN, "name": "x"}, headers=auth(admin))

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation failed"
        assert "name" in [e["field"] for e in body["errors"]]


class TestChainFlow:

    async def test_empty_chain_cannot_be_published(self, client, make_user):
        admin = await make_user("admin")
        created = await client.post("/api/milestone-chain", json=CHAIN, headers=auth(admin))
        assert created.status_code == 201
        chain_id = created.json()["chain"]["chain_id"]

        response = await client.post(f"/api/milestone-chain/{chain_id}/publish", headers=auth(admin))

        assert response.status_code == 400
        assert response.json()["message"] == "Cannot publish empty chain. Please add milestones first."
        chain = await client.get(f"/api/milestone-chain/{chain_id}/progress", headers=auth(admin))
        assert chain.json()["progress"]["total"] == 0
        assert chain.json()["chain"]["status"] != "published"

    async def test_publish_with_a_milestone(self, client, make_user):
        admin = await make_user("admin")
        chain_id = (await client.post("/api/milestone-chain", json=CHAIN, headers=auth(admin))).json()["chain"]["chain_id"]

        milestone = await client.post(f"/api/milestone/chain/{chain_id}", headers=auth(admin), json={
            "name": "Proposal", "type": "assignment",
            "start_date": "2026-01-05T00:00:00", "end_date": "2026-02-05T00:00:00",
        })
        assert milestone.status_code == 201
        assert milestone.json()["requires_republish"] is False

        published = await client.post(f"/api/milestone-chain/{chain_id}/publish", headers=auth(admin))
        assert published.status_code == 200
        assert published.json()["chain"]["status"] == "published"

        again = await client.post(f"/api/milestone-chain/{chain_id}/publish", headers=auth(admin))
        assert again.status_code == 409


class TestExamFlow:

    async def test_mentor_capacity_shortfall(self, client, make_user):
        admin = await make_user("admin")
        mentor = await make_user("mentor")
        created = await client.post("/api/exam-schedules", headers=auth(admin), json={
            "title": "Final reviews", "description": "End of term", "exam_type": "review",
            "start_date": "2026-03-02T00:00:00", "end_date": "2026-03-05T00:00:00",
        })
        assert created.status_code == 201
        schedule_id = created.json()["exam_schedule"]["schedule_id"]

        response = await client.post(f"/api/exam-schedules/{schedule_id}/mentor-schedule", headers=auth(mentor), json={
            "total_teams": 5, "team_duration": 20, "buffer_time": 5,
            "schedule_date": "2026-03-03T00:00:00", "start_time": "09:00", "end_time": "10:30",
        })

        assert response.status_code == 400
        body = response.json()
        assert body["total_time_needed"] == 120
        assert body["available_time"] == 90

    async def test_students_cannot_distribute(self, client, make_user):
        student = await make_user("student")
        response = await client.post("/api/exam-schedules/EXM_X/distribute-random", headers=auth(student))
        assert response.status_code == 403

    async def test_bad_time_format(self, client, make_user):
        admin = await make_user("admin")
        mentor = await make_user("mentor")
        schedule_id = (await client.post("/api/exam-schedules", headers=auth(admin), json={
            "title": "Viva", "description": "Viva voce", "exam_type": "viva",
            "start_date": "2026-03-02T00:00:00", "end_date": "2026-03-02T00:00:00",
        })).json()["exam_schedule"]["schedule_id"]

        response = await client.post(f"/api/exam-schedules/{schedule_id}/mentor-schedule", headers=auth(mentor), json={
            "total_teams": 2, "team_duration": 20,
            "schedule_date": "2026-03-02T00:00:00", "start_time": "9am", "end_time": "10:30",
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"


class TestAttendanceAndFeedback:

    async def test_mark_then_export_csv(self, client, make_user):
        mentor = await make_user("mentor")
        student = await make_user("student", full_name="Ada Student", department="CSE")

        response = await client.post("/api/attendance/mark", headers=auth(mentor), json={
            "attendance_data": [{"student_id": student.user_id, "date": "2026-02-09T09:00:00", "status": "present"}],
        })
        assert response.status_code == 201
        assert response.json()["errors"] is None

        response = await client.get("/api/attendance/export?department=CSE", headers=auth(mentor))
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "Ada Student" in response.text

        response = await client.get("/api/attendance/export?format=xlsx", headers=auth(mentor))
        assert response.status_code == 400

    async def test_feedback_routes_are_role_gated(self, client, make_user):
        mentor = await make_user("mentor")
        student = await make_user("student")

        response = await client.get("/api/mentor-feedback/check-eligibility", headers=auth(student))
        assert response.status_code == 200
        assert response.json()["data"]["eligible"] is False

        response = await client.post("/api/mentor-feedback", headers=auth(student), json={
            "mentor_id": mentor.user_id, "rating": 5, "comment": "Great sessions",
        })
        assert response.status_code == 403

        response = await client.get("/api/mentor-feedback/all", headers=auth(mentor))
        assert response.status_code == 403
        response = await client.get(f"/api/mentor-feedback/mentor/{mentor.user_id}", headers=auth(mentor))
        assert response.status_code == 200
