import pytest


@pytest.fixture
def program(api, care_team):
    activity = api.activity(care_team["therapist_a"])
    r = api.post("/api/home-programs", care_team["therapist_a"], json={
        "child_id": care_team["child_a_id"],
        "title": "Speech practice",
        "items": [{"activity_id": activity["id"]}],
    })
    return r.json()["data"]


def log(api, token, program_id, **fields):
    body = {"program_id": program_id, "progress_percentage": 25, **fields}
    return api.post("/api/progress", token, json=body)


def test_child_logs_own_progress(api, care_team, program):
    r = log(api, care_team["child_a"], program["id"], milestone="quarter", score=80, time_spent=12,
            notes="Went well<script>alert(1)</script>")
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["user_id"] == care_team["child_a_id"]
    assert data["status"] == "submitted"
    assert data["notes"] == "Went well"


def test_custom_milestone_rules(api, care_team, program):
    r = log(api, care_team["child_a"], program["id"], milestone="custom")
    assert r.status_code == 400
    assert r.json()["errors"][0]["message"] == 'customMilestone is required when milestone is "custom"'

    r = log(api, care_team["child_a"], program["id"], milestone="half", custom_milestone="first word")
    assert r.status_code == 400
    assert r.json()["errors"][0]["message"] == 'customMilestone should only be provided when milestone is "custom"'

    r = log(api, care_team["child_a"], program["id"], milestone="custom", custom_milestone="first word")
    assert r.status_code == 201


def test_child_cannot_log_for_someone_else(api, care_team, program):
    r = log(api, care_team["child_b"], program["id"], user_id=care_team["child_a_id"])
    assert r.status_code == 403


def test_program_must_belong_to_the_user(api, care_team, program):
    r = log(api, care_team["child_b"], program["id"])
    assert r.status_code == 400


def test_listing_paginates_filters_and_summarizes(api, care_team, program, clock):
    child = care_team["child_a"]
    for pct, milestone in ((25, "quarter"), (50, "half"), (75, "three-quarters")):
        log(api, child, program["id"], progress_percentage=pct, milestone=milestone, score=pct, time_spent=10)
        clock.advance(minutes=1)

    r = api.get(f"/api/progress/{care_team['child_a_id']}", child, params={"page": 1, "limit": 2})
    assert r.status_code == 200
    data = r.json()["data"]
    assert [p["progress_percentage"] for p in data["progress"]] == [75, 50]
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert data["summary"]["total_entries"] == 3
    assert data["summary"]["average_progress"] == 50
    assert data["summary"]["total_time_spent"] == 30
    assert data["summary"]["latest_progress"] == 75

    r = api.get(f"/api/progress/{care_team['child_a_id']}", child, params={"milestone": "half"})
    assert r.json()["data"]["pagination"]["total"] == 1

    r = api.get(f"/api/progress/{care_team['child_a_id']}", child, params={"limit": 101})
    assert r.status_code == 400


def test_progress_visibility(api, care_team, program):
    log(api, care_team["child_a"], program["id"])
    path = f"/api/progress/{care_team['child_a_id']}"
    assert api.get(path, care_team["child_b"]).status_code == 403
    assert api.get(path, care_team["therapist_b"]).status_code == 403
    assert api.get(path, care_team["therapist_a"]).status_code == 200
    assert api.get(path, api.superuser()).status_code == 200


def test_program_progress_view(api, care_team, program):
    log(api, care_team["child_a"], program["id"], progress_percentage=40)
    r = api.get(f"/api/progress/{care_team['child_a_id']}/{program['id']}", care_team["therapist_a"])
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["program"]["id"] == program["id"]
    assert data["summary"]["average_progress"] == 40

    r = api.get(f"/api/progress/{care_team['child_b_id']}/{program['id']}", care_team["child_b"])
    assert r.status_code == 404


def test_update_and_delete_entry(api, care_team, program):
    entry = log(api, care_team["child_a"], program["id"], status="draft").json()["data"]
    path = f"/api/progress/{entry['id']}"

    r = api.put(path, care_team["child_a"], json={"progress_percentage": 60, "status": "submitted"})
    assert r.status_code == 200
    assert r.json()["data"]["progress_percentage"] == 60

    r = api.put(path, care_team["child_a"], json={"status": "draft"})
    assert r.status_code == 400

    assert api.put(path, care_team["child_b"], json={"notes": "hi"}).status_code == 403
    assert api.get(f"/api/progress/entry/{entry['id']}", care_team["therapist_a"]).status_code == 200

    assert api.delete(path, care_team["child_b"]).status_code == 403
    assert api.delete(path, care_team["child_a"]).status_code == 200
    assert api.get(f"/api/progress/entry/{entry['id']}", care_team["child_a"]).status_code == 404


def test_update_ignores_nulls(api, care_team, program):
    entry = log(api, care_team["child_a"], program["id"], status="draft").json()["data"]
    path = f"/api/progress/{entry['id']}"

    r = api.put(path, care_team["child_a"], json={"status": None, "progress_percentage": None})
    assert r.status_code == 400
    assert r.json()["message"] == "No progress fields provided"

    r = api.put(path, care_team["child_a"], json={"status": None, "notes": "tired today"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "draft"
    assert data["progress_percentage"] == 25
    assert data["notes"] == "tired today"

    r = api.get(f"/api/progress/{care_team['child_a_id']}", care_team["child_a"])
    assert r.status_code == 200
    assert r.json()["data"]["summary"]["average_progress"] == 25

    r = api.post(f"{path}/review", care_team["therapist_a"], json={"status": "reviewed"})
    assert r.status_code == 200


def test_update_keeps_custom_milestone_consistent(api, care_team, program):
    entry = log(api, care_team["child_a"], program["id"], milestone="custom",
                custom_milestone="first word").json()["data"]
    path = f"/api/progress/{entry['id']}"

    r = api.put(path, care_team["child_a"], json={"milestone": None, "notes": "again"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["milestone"] == "custom"
    assert data["custom_milestone"] == "first word"

    r = api.put(path, care_team["child_a"], json={"milestone": "half"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["milestone"] == "half"
    assert data["custom_milestone"] is None

    r = api.put(path, care_team["child_a"], json={"custom_milestone": "second word"})
    assert r.status_code == 400


def test_review_flow(api, care_team, program):
    entry = log(api, care_team["child_a"], program["id"]).json()["data"]
    path = f"/api/progress/{entry['id']}/review"

    r = api.post(path, care_team["admin"], json={"status": "reviewed"})
    assert r.status_code == 403
    assert r.json()["message"] == "Only therapists and superusers can review progress"
    assert api.post(path, care_team["therapist_b"], json={"status": "reviewed"}).status_code == 403

    r = api.post(path, care_team["therapist_a"], json={"status": "approved", "review_notes": "Great job"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "approved"
    assert data["reviewed_by"] == care_team["therapist_a_id"]

    r = api.post(path, care_team["therapist_a"], json={"status": "reviewed"})
    assert r.status_code == 400
