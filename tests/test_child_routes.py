from datetime import timedelta

from bson.objectid import ObjectId

from database import ASSIGNMENTS, USERS


def iso(dt):
    return dt.isoformat()


def test_child_sees_only_own_assignments(api, care_team, clock):
    activity = api.activity(care_team["therapist_a"])
    api.assign_activity(care_team["therapist_a"], care_team["child_a_id"], activity["id"])

    r = api.get("/api/child/activities", care_team["child_a"])
    assert r.status_code == 200
    assert r.json()["total"] == 1
    assert r.json()["data"][0]["name"] == "Stacking blocks"

    r = api.get("/api/child/activities", care_team["child_b"])
    assert r.json()["total"] == 0


def test_only_children_use_the_child_endpoints(api, care_team):
    r = api.get("/api/child/activities", care_team["therapist_a"])
    assert r.status_code == 403
    assert r.json()["message"] == "Only children can access this endpoint"


def test_start_and_submit_flow(api, care_team, ctx):
    activity = api.activity(care_team["therapist_a"])
    assignment = api.assign_activity(care_team["therapist_a"], care_team["child_a_id"], activity["id"])
    child = care_team["child_a"]

    r = api.put(f"/api/child/activities/{assignment['id']}/start", child)
    assert r.status_code == 200
    assert r.json()["data"]["completion_status"] == "in-progress"
    assert api.put(f"/api/child/activities/{assignment['id']}/start", child).status_code == 400

    r = api.put(f"/api/child/activities/{assignment['id']}/submit", child,
                json={"completion_video_url": "https://videos.example.com/v/1", "score": 87})
    assert r.status_code == 200
    assert r.json()["data"]["completion_status"] == "completed"

    r = api.put(f"/api/child/activities/{assignment['id']}/submit", child,
                json={"completion_video_url": "https://videos.example.com/v/2"})
    assert r.status_code == 400
    assert r.json()["message"] == "Activity already completed"

    stored = ctx.db[USERS].find_one({"email": "kid.a@x.com"})
    assert stored["stats"]["total_activities_completed"] == 1


def test_submit_requires_a_video_url(api, care_team):
    activity = api.activity(care_team["therapist_a"])
    assignment = api.assign_activity(care_team["therapist_a"], care_team["child_a_id"], activity["id"])
    r = api.put(f"/api/child/activities/{assignment['id']}/submit", care_team["child_a"],
                json={"completion_video_url": "not a url"})
    assert r.status_code == 400
    assert r.json()["errors"][0]["message"] == "Valid video URL is required"


def test_child_cannot_touch_another_childs_assignment(api, care_team):
    activity = api.activity(care_team["therapist_a"])
    assignment = api.assign_activity(care_team["therapist_a"], care_team["child_a_id"], activity["id"])
    r = api.put(f"/api/child/activities/{assignment['id']}/start", care_team["child_b"])
    assert r.status_code == 404


def test_overdue_shows_on_read_without_mutating_storage(api, care_team, ctx, clock):
    therapist, child = care_team["therapist_a"], care_team["child_a"]
    activity = api.activity(therapist)
    due = clock() + timedelta(days=1)
    done = api.assign_activity(therapist, care_team["child_a_id"], activity["id"], due_date=iso(due))
    late = api.assign_activity(therapist, care_team["child_a_id"], activity["id"], due_date=iso(due))
    api.put(f"/api/child/activities/{done['id']}/submit", child,
            json={"completion_video_url": "https://videos.example.com/v/1", "score": 50})

    clock.advance(days=2)
    for _ in range(2):
        r = api.get("/api/child/report", child)
        report = r.json()["data"]
        assert report["total_activities"] == 2
        assert report["completed"] == 1
        assert report["not_completed"] == 1
        assert report["completion_percentage"] == 50
        assert report["average_score"] == 25

    stored = ctx.db[ASSIGNMENTS].find_one({"_id": ObjectId(late["id"])})
    assert stored["completion_status"] == "pending"

    r = api.get("/api/child/activities", child)
    statuses = {a["assignment_id"]: a["completion_status"] for a in r.json()["data"]}
    assert statuses[late["id"]] == "not-completed"


def test_sweep_endpoint_persists_overdue_once(api, care_team, ctx, clock):
    therapist = care_team["therapist_a"]
    activity = api.activity(therapist)
    api.assign_activity(therapist, care_team["child_a_id"], activity["id"],
                        due_date=iso(clock() + timedelta(hours=1)))
    clock.advance(hours=2)

    r = api.post("/api/admin/maintenance/mark-overdue", care_team["admin"])
    assert r.json() == {"success": True, "modified": 1}
    r = api.post("/api/admin/maintenance/mark-overdue", care_team["admin"])
    assert r.json()["modified"] == 0
    assert ctx.db[ASSIGNMENTS].find_one()["completion_status"] == "not-completed"

    assert api.post("/api/admin/maintenance/mark-overdue", therapist).status_code == 403


def test_pdf_report(api, care_team):
    activity = api.activity(care_team["therapist_a"])
    api.assign_activity(care_team["therapist_a"], care_team["child_a_id"], activity["id"])
    r = api.get("/api/child/report.pdf", care_team["child_a"])
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")
