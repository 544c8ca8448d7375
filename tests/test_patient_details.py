def test_owner_reads_an_empty_record(api, care_team):
    r = api.get(f"/api/patient-details/{care_team['child_a_id']}", care_team["child_a"])
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["user_id"] == care_team["child_a_id"]
    assert data["documents"] == []


def test_staff_upsert_and_owner_read(api, care_team):
    therapist = care_team["therapist_a"]
    r = api.post("/api/patient-details/upsert", therapist, json={
        "user_id": care_team["child_a_id"],
        "diagnosis": "Developmental delay",
        "allergies": ["peanuts"],
    })
    assert r.status_code == 200
    assert r.json()["data"]["allergies"] == ["peanuts"]

    r = api.post("/api/patient-details/upsert", therapist, json={
        "user_id": care_team["child_a_id"], "medications": ["none"],
    })
    data = r.json()["data"]
    assert data["diagnosis"] == "Developmental delay"
    assert data["medications"] == ["none"]

    r = api.get(f"/api/patient-details/{care_team['child_a_id']}", care_team["child_a"])
    assert r.json()["data"]["diagnosis"] == "Developmental delay"


def test_owner_cannot_edit_and_others_cannot_read(api, care_team):
    r = api.post("/api/patient-details/upsert", care_team["child_a"],
                 json={"user_id": care_team["child_a_id"], "diagnosis": "self"})
    assert r.status_code == 403
    r = api.post("/api/patient-details/upsert", care_team["therapist_b"],
                 json={"user_id": care_team["child_a_id"], "diagnosis": "x"})
    assert r.status_code == 403
    assert api.get(f"/api/patient-details/{care_team['child_a_id']}", care_team["child_b"]).status_code == 403


def test_lookup_by_email(api, care_team):
    r = api.get("/api/patient-details", care_team["admin"], params={"email": "KID.A@x.com"})
    assert r.status_code == 200
    assert r.json()["data"]["user_id"] == care_team["child_a_id"]

    assert api.get("/api/patient-details", care_team["admin"], params={"email": "none@x.com"}).status_code == 404
    assert api.get("/api/patient-details", care_team["child_a"], params={"email": "kid.a@x.com"}).status_code == 403


def test_document_metadata(api, care_team):
    path = f"/api/patient-details/{care_team['child_a_id']}/documents"
    doc = {"name": "Assessment", "url": "https://files.example.com/a.pdf", "mime_type": "application/pdf",
           "size_bytes": 2048}
    r = api.post(path, care_team["therapist_a"], json=doc)
    assert r.status_code == 201
    documents = r.json()["data"]["documents"]
    assert [d["name"] for d in documents] == ["Assessment"]

    r = api.post(path, care_team["therapist_a"], json={**doc, "mime_type": "application/zip"})
    assert r.status_code == 400
    r = api.post(path, care_team["therapist_a"], json={**doc, "size_bytes": 11 * 1024 * 1024})
    assert r.status_code == 400
    assert api.post(path, care_team["child_a"], json=doc).status_code == 403
