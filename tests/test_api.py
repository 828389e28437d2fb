"""End-to-end tests through the HTTP API."""
import pytest
from fastapi.testclient import TestClient

from tasktrack.database import get_db
from tasktrack.main import app
from tasktrack.models.enums import TaskStatus


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(user):
    return {"X-User-Id": str(user.id)}


def create_task(client, creator, assignee, title="Update attendance sheet"):
    res = client.post("/api/tasks", json={"title": title, "assigned_to": assignee.id}, headers=as_user(creator))
    assert res.status_code == 201, res.text
    return res.json()


def move_to_completed(client, task_id, worker):
    for next_status in ("in_progress", "completed"):
        res = client.patch(f"/api/tasks/{task_id}", json={"status": next_status}, headers=as_user(worker))
        assert res.status_code == 200, res.text


class TestAuth:

    def test_missing_header_is_unauthorized(self, client):
        assert client.get("/api/tasks").status_code == 401

    def test_inactive_user_is_unauthorized(self, client, inactive_staff):
        assert client.get("/api/tasks", headers=as_user(inactive_staff)).status_code == 401

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


class TestTaskFlow:

    def test_single_verifier(self, client, admin, staff):
        task = create_task(client, admin, staff)
        move_to_completed(client, task["id"], staff)

        res = client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "verified", "verification_rating": 4},
            headers=as_user(admin)
        )
        assert res.status_code == 200, res.text
        body = res.json()
        assert body["_fullyVerified"] is True
        assert body["status"] == "verified"
        assert body["verification_rating"] == 4

    def test_two_verifiers(self, client, super_admin, admin, staff):
        task = create_task(client, super_admin, admin)
        res = client.patch(f"/api/tasks/{task['id']}", json={"delegated_to": staff.id}, headers=as_user(admin))
        assert res.status_code == 200, res.text
        move_to_completed(client, task["id"], staff)

        res = client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "verified", "verification_rating": 4},
            headers=as_user(super_admin)
        )
        assert res.json()["_fullyVerified"] is False

        detail = client.get(f"/api/tasks/{task['id']}", headers=as_user(admin)).json()
        assert detail["status"] == "completed"
        assert [v["verifier_role"] for v in detail["verifications"]] == ["assigned_by"]
        requirements = detail["verification_requirements"]
        assert [s["label"] for s in requirements["slots"]] == ["assigner", "delegator"]
        assert requirements["can_verify"] is True
        assert requirements["available_slot"] == "assigned_to"

        res = client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "verified", "verification_rating": 5},
            headers=as_user(admin)
        )
        body = res.json()
        assert body["_fullyVerified"] is True
        assert body["status"] == "verified"
        assert body["verification_rating"] == 5

    def test_rating_rules(self, client, admin, staff):
        task = create_task(client, admin, staff)
        move_to_completed(client, task["id"], staff)
        url = f"/api/tasks/{task['id']}"

        res = client.patch(url, json={"status": "verified"}, headers=as_user(admin))
        assert res.status_code == 400
        assert "star rating" in res.json()["detail"]

        res = client.patch(url, json={"status": "verified", "verification_rating": 2}, headers=as_user(admin))
        assert res.status_code == 400
        assert "comment is required" in res.json()["detail"]

        res = client.patch(url, json={"status": "verified", "verification_rating": 2.5}, headers=as_user(admin))
        assert res.status_code == 400

        res = client.patch(
            url,
            json={"status": "verified", "verification_rating": 2, "verification_comment": "Columns misaligned"},
            headers=as_user(admin)
        )
        assert res.status_code == 200
        assert res.json()["_fullyVerified"] is True

    def test_staff_verification_forbidden(self, client, admin, staff):
        task = create_task(client, admin, staff)
        move_to_completed(client, task["id"], staff)
        res = client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "verified", "verification_rating": 5},
            headers=as_user(staff)
        )
        assert res.status_code == 403
        assert res.json()["detail"] == "Only admins can verify tasks"

    def test_invalid_transition(self, client, admin, staff):
        task = create_task(client, admin, staff)
        res = client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"}, headers=as_user(staff))
        assert res.status_code == 400
        assert res.json()["detail"] == "Cannot transition from open to completed"

    def test_reopen_allows_fresh_verification(self, client, admin, staff):
        task = create_task(client, admin, staff)
        move_to_completed(client, task["id"], staff)
        url = f"/api/tasks/{task['id']}"

        assert client.patch(url, json={"status": "in_progress"}, headers=as_user(admin)).status_code == 200
        assert client.patch(url, json={"status": "completed"}, headers=as_user(staff)).status_code == 200

        res = client.patch(url, json={"status": "verified", "verification_rating": 4}, headers=as_user(admin))
        assert res.json()["_fullyVerified"] is True

    def test_mixed_update_rejected(self, client, admin, staff):
        task = create_task(client, admin, staff)
        res = client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "in_progress", "title": "Renamed"},
            headers=as_user(admin)
        )
        assert res.status_code == 400

    def test_delete(self, client, admin, other_admin, staff):
        task = create_task(client, admin, staff)
        url = f"/api/tasks/{task['id']}"
        assert client.delete(url, headers=as_user(other_admin)).status_code == 403
        assert client.delete(url, headers=as_user(admin)).status_code == 204
        assert client.get(url, headers=as_user(admin)).status_code == 404


class TestVisibility:

    def test_worker_never_sees_ratings(self, client, super_admin, admin, staff):
        task = create_task(client, super_admin, admin)
        client.patch(f"/api/tasks/{task['id']}", json={"delegated_to": staff.id}, headers=as_user(admin))
        move_to_completed(client, task["id"], staff)
        for verifier, rating in ((super_admin, 4), (admin, 5)):
            client.patch(
                f"/api/tasks/{task['id']}",
                json={"status": "verified", "verification_rating": rating},
                headers=as_user(verifier)
            )

        worker_view = client.get(f"/api/tasks/{task['id']}", headers=as_user(staff)).json()
        assert worker_view["status"] == TaskStatus.VERIFIED.value
        assert worker_view["verified_at"] is not None
        assert worker_view["verification_rating"] is None
        assert all(v["rating"] is None for v in worker_view["verifications"])

        admin_view = client.get(f"/api/tasks/{task['id']}", headers=as_user(admin)).json()
        assert admin_view["verification_rating"] == 5
        assert sorted(v["rating"] for v in admin_view["verifications"]) == [4, 5]

    def test_staff_sees_only_own_tasks(self, client, admin, staff, other_staff):
        mine = create_task(client, admin, staff, title="Mine")
        theirs = create_task(client, admin, other_staff, title="Theirs")

        listed = client.get("/api/tasks", headers=as_user(staff)).json()
        assert [t["id"] for t in listed] == [mine["id"]]
        assert client.get(f"/api/tasks/{theirs['id']}", headers=as_user(staff)).status_code == 403

    def test_admin_does_not_see_other_super_admin_tasks(self, client, super_admin, admin, staff):
        hidden = create_task(client, super_admin, staff, title="SA to staff")
        own = create_task(client, super_admin, admin, title="SA to admin")

        listed = {t["id"] for t in client.get("/api/tasks", headers=as_user(admin)).json()}
        assert own["id"] in listed
        assert hidden["id"] not in listed


class TestUsersAndComments:

    def test_admin_cannot_create_super_admin(self, client, admin):
        res = client.post(
            "/api/users",
            json={"email": "boss@example.com", "role": "super_admin"},
            headers=as_user(admin)
        )
        assert res.status_code == 403

    def test_duplicate_email(self, client, admin, staff):
        res = client.post("/api/users", json={"email": " AMIT@example.com "}, headers=as_user(admin))
        assert res.status_code == 409

    def test_no_self_modification(self, client, admin):
        res = client.patch(f"/api/users/{admin.id}", json={"name": "Me"}, headers=as_user(admin))
        assert res.status_code == 400

    def test_admin_cannot_modify_super_admin(self, client, admin, super_admin):
        res = client.patch(f"/api/users/{super_admin.id}", json={"is_active": False}, headers=as_user(admin))
        assert res.status_code == 403

    def test_comments_and_activity(self, client, admin, staff):
        task = create_task(client, admin, staff)
        res = client.post(f"/api/tasks/{task['id']}/comments", json={"body": "Started"}, headers=as_user(staff))
        assert res.status_code == 201
        assert res.json()["author_name"] == "Amit"

        comments = client.get(f"/api/tasks/{task['id']}/comments", headers=as_user(admin)).json()
        assert [c["body"] for c in comments] == ["Started"]

        activity = client.get(f"/api/tasks/{task['id']}/activity", headers=as_user(admin)).json()
        assert [a["action"] for a in activity] == ["commented", "created"]

    def test_dashboard_pending_verification(self, client, admin, staff):
        task = create_task(client, admin, staff)
        move_to_completed(client, task["id"], staff)

        summary = client.get("/api/dashboard", headers=as_user(admin)).json()
        assert summary["pending_verification"] == 1
        assert summary["completed"] == 1

        staff_summary = client.get("/api/dashboard", headers=as_user(staff)).json()
        assert staff_summary["pending_verification"] == 0

    def test_reports(self, client, super_admin, admin, staff):
        task = create_task(client, admin, staff)
        move_to_completed(client, task["id"], staff)
        client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "verified", "verification_rating": 5},
            headers=as_user(admin)
        )

        reports = client.get("/api/reports", headers=as_user(admin)).json()
        by_user = {r["user_id"]: r for r in reports}
        assert super_admin.id not in by_user
        assert by_user[staff.id]["verified"] == 1
        assert by_user[staff.id]["average_rating"] == 5

        assert client.get("/api/reports", headers=as_user(staff)).status_code == 403


class TestActivityRedaction:

    def test_worker_activity_has_no_rating(self, client, admin, staff):
        task = create_task(client, admin, staff)
        move_to_completed(client, task["id"], staff)
        client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "verified", "verification_rating": 2, "verification_comment": "Late and incomplete"},
            headers=as_user(admin)
        )
        url = f"/api/tasks/{task['id']}/activity"

        worker_entry = next(a for a in client.get(url, headers=as_user(staff)).json() if a["action"] == "verified")
        assert "rating" not in worker_entry["details"]
        assert worker_entry["details"]["fully_verified"] is True

        admin_entry = next(a for a in client.get(url, headers=as_user(admin)).json() if a["action"] == "verified")
        assert admin_entry["details"]["rating"] == 2

    def test_delegate_activity_has_no_rating(self, client, super_admin, admin, staff):
        task = create_task(client, super_admin, admin)
        client.patch(f"/api/tasks/{task['id']}", json={"delegated_to": staff.id}, headers=as_user(admin))
        move_to_completed(client, task["id"], staff)
        client.patch(
            f"/api/tasks/{task['id']}",
            json={"status": "verified", "verification_rating": 4},
            headers=as_user(super_admin)
        )

        activity = client.get(f"/api/tasks/{task['id']}/activity", headers=as_user(staff)).json()
        verified = [a for a in activity if a["action"] == "verified"]
        assert len(verified) == 1
        assert "rating" not in verified[0]["details"]

        # The delegating admin is not the worker and sees the rating
        activity = client.get(f"/api/tasks/{task['id']}/activity", headers=as_user(admin)).json()
        assert [a["details"]["rating"] for a in activity if a["action"] == "verified"] == [4]


class TestCenters:

    def test_create_and_list(self, client, super_admin, staff):
        res = client.post("/api/centers", json={"name": "North"}, headers=as_user(super_admin))
        assert res.status_code == 201
        assert client.post("/api/centers", json={"name": "North"}, headers=as_user(super_admin)).status_code == 409

        listed = client.get("/api/centers", headers=as_user(staff)).json()
        assert [c["name"] for c in listed] == ["North"]

    def test_admin_cannot_create(self, client, admin):
        assert client.post("/api/centers", json={"name": "North"}, headers=as_user(admin)).status_code == 403

    def test_assign_user_to_center(self, client, super_admin, admin, staff):
        center = client.post("/api/centers", json={"name": "North"}, headers=as_user(super_admin)).json()

        res = client.patch(f"/api/users/{staff.id}", json={"center_ids": [center["id"]]}, headers=as_user(admin))
        assert res.status_code == 403

        res = client.patch(f"/api/users/{staff.id}", json={"center_ids": [center["id"]]}, headers=as_user(super_admin))
        assert res.status_code == 200
        assert [c["name"] for c in res.json()["centers"]] == ["North"]

    def test_admin_sees_center_members_tasks(self, client, admin, other_admin, staff, join_center):
        task = create_task(client, other_admin, staff)
        url = f"/api/tasks/{task['id']}"
        assert client.get(url, headers=as_user(admin)).status_code == 403
        assert task["id"] not in {t["id"] for t in client.get("/api/tasks", headers=as_user(admin)).json()}

        join_center("North", admin, staff)
        assert client.get(url, headers=as_user(admin)).status_code == 200
        assert task["id"] in {t["id"] for t in client.get("/api/tasks", headers=as_user(admin)).json()}

    def test_dashboard_timeline(self, client, admin, staff):
        task = create_task(client, admin, staff, title="Collect permission slips")
        client.patch(f"/api/tasks/{task['id']}", json={"status": "in_progress"}, headers=as_user(staff))

        timeline = client.get("/api/dashboard", headers=as_user(admin)).json()["timeline"]
        assert [item["action"] for item in timeline] == ["status_changed", "created"]
        assert timeline[0]["task_title"] == "Collect permission slips"
        assert timeline[0]["to_status"] == "in_progress"
