import pytest
from fastapi import HTTPException

from admin_routes import _move_child
from database import USERS


def test_unassigned_children_listing(api, care_team):
    r = api.get("/api/admin/children/unassigned", care_team["admin"])
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == body["count"] == 1
    assert body["data"][0]["id"] == care_team["child_b_id"]


def test_assign_therapist_links_both_sides(api, care_team, ctx):
    data = api.assign_therapist(care_team["admin"], care_team["child_b_id"], care_team["therapist_b_id"])
    assert data["assigned_therapist"]["id"] == care_team["therapist_b_id"]
    therapist = ctx.db[USERS].find_one({"email": "ther.b@clinic.org"})
    assert therapist["assigned_patients"] == [care_team["child_b_id"]]


def test_reassignment_moves_the_child(api, care_team, ctx):
    api.assign_therapist(care_team["admin"], care_team["child_a_id"], care_team["therapist_b_id"])
    old = ctx.db[USERS].find_one({"email": "ther.a@clinic.org"})
    new = ctx.db[USERS].find_one({"email": "ther.b@clinic.org"})
    assert care_team["child_a_id"] not in old["assigned_patients"]
    assert care_team["child_a_id"] in new["assigned_patients"]

    r = api.get(f"/api/therapist/patients/{care_team['child_a_id']}/report", care_team["therapist_a"])
    assert r.status_code == 403


def test_stale_reassignment_is_rejected(api, care_team, ctx):
    users = ctx.db[USERS]
    stale_child = users.find_one({"email": "kid.a@x.com"})
    therapist_a = users.find_one({"email": "ther.a@clinic.org"})
    api.assign_therapist(care_team["admin"], care_team["child_a_id"], care_team["therapist_b_id"])

    with pytest.raises(HTTPException) as exc:
        _move_child(users, stale_child, therapist_a, ctx.now())
    assert exc.value.status_code == 409

    child = users.find_one({"email": "kid.a@x.com"})
    assert child["assigned_therapist"] == care_team["therapist_b_id"]
    assert care_team["child_a_id"] not in users.find_one({"email": "ther.a@clinic.org"})["assigned_patients"]
    assert care_team["child_a_id"] in users.find_one({"email": "ther.b@clinic.org"})["assigned_patients"]


def test_assign_therapist_not_found(api, care_team):
    admin = care_team["admin"]
    r = api.put(f"/api/admin/children/{care_team['therapist_a_id']}/assign-therapist", admin,
                json={"therapist_id": care_team["therapist_b_id"]})
    assert r.status_code == 404
    assert r.json()["message"] == "Child not found"

    r = api.put(f"/api/admin/children/{care_team['child_b_id']}/assign-therapist", admin,
                json={"therapist_id": care_team["child_a_id"]})
    assert r.json()["message"] == "Therapist not found"

    r = api.put("/api/admin/children/nope/assign-therapist", admin, json={"therapist_id": "x"})
    assert r.status_code == 400


def test_non_admins_are_rejected(api, care_team):
    r = api.get("/api/admin/users", care_team["therapist_a"])
    assert r.status_code == 403
    assert r.json()["message"] == "Access denied. Requires role: admin or hospital"


def test_user_listing_and_status_changes(api, care_team, ctx):
    admin = care_team["admin"]
    r = api.get("/api/admin/users", admin, params={"role": "therapist"})
    assert r.json()["count"] == 2

    r = api.put(f"/api/admin/users/{care_team['child_b_id']}/status", admin, json={"is_active": False})
    assert r.status_code == 200
    assert r.json()["data"]["is_active"] is False
    assert api.get("/api/auth/profile", care_team["child_b"]).status_code == 401


def test_admin_cannot_touch_superuser_or_self(api, care_team, ctx):
    admin = care_team["admin"]
    root = ctx.db[USERS].find_one({"role": "superuser"})
    r = api.put(f"/api/admin/users/{root['_id']}/status", admin, json={"is_active": False})
    assert r.status_code == 403

    me = api.get("/api/auth/profile", admin).json()["data"]
    r = api.put(f"/api/admin/users/{me['id']}/status", admin, json={"is_active": False})
    assert r.status_code == 400


def test_hospital_sees_only_its_own_users(api, care_team):
    hospital, hospital_user = api.register("h@clinic.org", role="hospital", token=api.superuser())
    _, own_child = api.register("own.kid@x.com", token=hospital)
    _, own_therapist = api.register("own.ther@clinic.org", role="therapist", token=hospital)

    r = api.get("/api/admin/children/unassigned", hospital)
    assert [c["id"] for c in r.json()["data"]] == [own_child["id"]]

    api.assign_therapist(hospital, own_child["id"], own_therapist["id"])
    r = api.put(f"/api/admin/children/{care_team['child_b_id']}/assign-therapist", hospital,
                json={"therapist_id": own_therapist["id"]})
    assert r.status_code == 403

    r = api.get(f"/api/therapist/patients/{own_child['id']}/report", hospital)
    assert r.status_code == 200
    r = api.get(f"/api/therapist/patients/{care_team['child_a_id']}/report", hospital)
    assert r.status_code == 403
