import json
import math

from fastapi.testclient import TestClient

from app.main import app
from conftest import NYC, auth, create_issue, issue_payload


# -------------------------------------------------------
# Create
# -------------------------------------------------------

def test_create_issue_json(client, citizen):
    body = create_issue(client, citizen)
    assert body["title"] == "Deep pothole on 7th Ave"
    assert body["status"] == "pending"
    assert body["priority"] == "medium"
    assert body["category"] == "pothole"
    assert body["isPublic"] is True
    assert body["location"] == {"type": "Point", "coordinates": [NYC[0], NYC[1]]}
    assert body["address"]["city"] == "New York"
    assert body["reportedBy"]["email"] == "citizen@example.org"
    assert len(body["statusHistory"]) == 1
    assert body["statusHistory"][0]["status"] == "pending"
    assert body["upvoteCount"] == 0 and body["totalVotes"] == 0


def test_create_trims_text(client, citizen):
    body = create_issue(client, citizen, title="  Broken bench  ", description="  Seat slats missing ")
    assert body["title"] == "Broken bench"
    assert body["description"] == "Seat slats missing"


def test_create_rejects_invalid_coordinates(client, citizen):
    r = client.post("/issues", json=issue_payload(lng=200, lat=10), headers=auth(citizen))
    assert r.status_code == 400
    r = client.post("/issues", json=issue_payload(lng=10, lat=-90.5), headers=auth(citizen))
    assert r.status_code == 400


def test_create_rejects_missing_location(client, citizen):
    body = issue_payload()
    del body["location"]
    r = client.post("/issues", json=body, headers=auth(citizen))
    assert r.status_code == 400


def test_create_rejects_missing_text(client, citizen):
    r = client.post("/issues", json=issue_payload(title="   "), headers=auth(citizen))
    assert r.status_code == 400
    body = issue_payload()
    del body["description"]
    r = client.post("/issues", json=body, headers=auth(citizen))
    assert r.status_code == 400


def test_create_rejects_malformed_json(client, citizen):
    headers = {**auth(citizen), "content-type": "application/json"}
    r = client.post("/issues", content="{not json", headers=headers)
    assert r.status_code == 422


def test_create_limits_apply_after_trimming(client, citizen):
    body = create_issue(client, citizen, title="  " + "t" * 200 + "  ", description=" " + "d" * 2000 + " ")
    assert len(body["title"]) == 200
    assert len(body["description"]) == 2000


def test_create_rejects_too_long_title(client, citizen):
    r = client.post("/issues", json=issue_payload(title="x" * 201), headers=auth(citizen))
    assert r.status_code == 422


def test_create_requires_auth(client):
    r = client.post("/issues", json=issue_payload())
    assert r.status_code == 401


def test_create_classifies_when_category_missing(client, citizen):
    body = issue_payload(title="Lamp out", description="The street lamp is dark all night")
    del body["category"]
    r = client.post("/issues", json=body, headers=auth(citizen))
    assert r.status_code == 201
    assert r.json()["category"] == "street_light"


def test_create_unknown_text_falls_back_to_other(client, citizen):
    body = issue_payload(title="Strange smell", description="Something odd near the corner")
    del body["category"]
    r = client.post("/issues", json=body, headers=auth(citizen))
    assert r.status_code == 201
    assert r.json()["category"] == "other"


def test_create_records_report_metadata(client, citizen, db_session):
    from app.models.issue import Issue

    issue_id = create_issue(client, citizen)["id"]
    row = db_session.get(Issue, issue_id)
    assert row.report_meta["reportingMethod"] == "api"
    assert "userAgent" in row.report_meta


def test_create_multipart_with_images(client, citizen, storage):
    data = {
        "title": "Overflowing bins",
        "description": "Garbage bins overflowing by the park gate",
        "category": "garbage",
        "location": json.dumps({"type": "Point", "coordinates": [NYC[0], NYC[1]]}),
        "address": json.dumps({"street": "W 44th St", "city": "New York"}),
    }
    files = [
        ("images", ("bins.png", b"\x89PNG\r\n\x1a\nfake", "image/png")),
        ("images", ("gate.jpg", b"\xff\xd8\xfffake", "image/jpeg")),
    ]
    r = client.post("/issues", data=data, files=files, headers=auth(citizen))
    assert r.status_code == 201, r.text
    body = r.json()
    assert [img["originalName"] for img in body["images"]] == ["bins.png", "gate.jpg"]
    assert all(img["url"].startswith("memory://") for img in body["images"])
    assert len(storage.objects) == 2
    assert body["address"]["street"] == "W 44th St"


def test_create_multipart_rejects_bad_image_type(client, citizen, storage):
    data = {
        "title": "Graffiti",
        "description": "Spray paint on the wall",
        "location": json.dumps({"type": "Point", "coordinates": [NYC[0], NYC[1]]}),
    }
    files = [("images", ("notes.txt", b"hello", "text/plain"))]
    r = client.post("/issues", data=data, files=files, headers=auth(citizen))
    assert r.status_code == 400
    assert storage.objects == {}


def test_create_multipart_rejects_bad_location_json(client, citizen):
    data = {"title": "t", "description": "d", "location": "{oops"}
    r = client.post("/issues", data=data, files=[("images", ("a.png", b"x", "image/png"))], headers=auth(citizen))
    assert r.status_code == 422


def test_failed_create_removes_uploaded_images(client, citizen, storage):
    calls = []
    original = storage.upload_image

    def flaky_upload(data, content_type, path):
        calls.append(path)
        if len(calls) == 2:
            raise RuntimeError("bucket full")
        return original(data, content_type, path)

    storage.upload_image = flaky_upload
    data = {
        "title": "Leaking hydrant",
        "description": "Water leak from hydrant",
        "location": json.dumps({"type": "Point", "coordinates": [NYC[0], NYC[1]]}),
    }
    files = [
        ("images", ("a.png", b"one", "image/png")),
        ("images", ("b.png", b"two", "image/png")),
    ]
    # unhandled errors re-raise through TestClient unless told otherwise
    safe_client = TestClient(app, raise_server_exceptions=False)
    r = safe_client.post("/issues", data=data, files=files, headers=auth(citizen))
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal server error"}
    assert storage.objects == {}
    listing = client.get("/issues", headers=auth(citizen)).json()
    assert listing["pagination"]["totalCount"] == 0


# -------------------------------------------------------
# Read / list
# -------------------------------------------------------

def test_get_issue_and_404(client, citizen):
    issue_id = create_issue(client, citizen)["id"]
    r = client.get(f"/issues/{issue_id}", headers=auth(citizen))
    assert r.status_code == 200
    assert r.json()["id"] == issue_id
    assert client.get("/issues/999999", headers=auth(citizen)).status_code == 404


def test_list_requires_auth(client):
    assert client.get("/issues").status_code == 401


def test_radius_search_finds_nearby_issue(client, citizen):
    issue_id = create_issue(client, citizen)["id"]

    r = client.get(
        "/issues",
        params={"latitude": NYC[1], "longitude": NYC[0], "radius": 5000},
        headers=auth(citizen),
    )
    assert r.status_code == 200
    ids = [i["id"] for i in r.json()["issues"]]
    assert issue_id in ids
    assert r.json()["issues"][0]["distanceMeters"] == 0

    r = client.get(
        "/issues",
        params={"latitude": 0, "longitude": 0, "radius": 1},
        headers=auth(citizen),
    )
    assert r.status_code == 200
    assert [i["id"] for i in r.json()["issues"]] == []


def test_radius_excludes_issue_just_outside(client, citizen):
    # ~1.1 km north of the centre
    create_issue(client, citizen, lat=NYC[1] + 0.01)
    params = {"latitude": NYC[1], "longitude": NYC[0]}
    inside = client.get("/issues", params={**params, "radius": 1500}, headers=auth(citizen)).json()
    outside = client.get("/issues", params={**params, "radius": 1000}, headers=auth(citizen)).json()
    assert inside["pagination"]["totalCount"] == 1
    assert outside["pagination"]["totalCount"] == 0


def test_invalid_search_centre_returns_empty_page(client, citizen):
    create_issue(client, citizen)
    for params in ({"latitude": 95, "longitude": 0}, {"latitude": "north", "longitude": 0}):
        r = client.get("/issues", params=params, headers=auth(citizen))
        assert r.status_code == 200
        assert r.json()["issues"] == []
        assert r.json()["pagination"]["totalCount"] == 0


def test_sort_by_distance_is_nearest_first(client, citizen):
    far = create_issue(client, citizen, lng=-74.05, lat=40.80)["id"]
    near = create_issue(client, citizen, lng=NYC[0], lat=NYC[1])["id"]
    mid = create_issue(client, citizen, lng=-73.99, lat=40.76)["id"]
    r = client.get(
        "/issues",
        params={"latitude": NYC[1], "longitude": NYC[0], "radius": 20000, "sortBy": "distance"},
        headers=auth(citizen),
    )
    issues = r.json()["issues"]
    assert [i["id"] for i in issues] == [near, mid, far]
    distances = [i["distanceMeters"] for i in issues]
    assert distances == sorted(distances)


def test_status_filter(client, citizen, admin):
    pending = create_issue(client, citizen, title="Pending one")["id"]
    resolved = create_issue(client, citizen, title="Resolved one")["id"]
    r = client.put(f"/issues/{resolved}", json={"status": "resolved"}, headers=auth(admin))
    assert r.status_code == 200

    r = client.get("/issues", params={"status": "resolved"}, headers=auth(citizen))
    assert [i["id"] for i in r.json()["issues"]] == [resolved]
    r = client.get("/issues", params={"status": "pending"}, headers=auth(citizen))
    assert [i["id"] for i in r.json()["issues"]] == [pending]


def test_unknown_filter_value_matches_nothing(client, citizen):
    create_issue(client, citizen)
    r = client.get("/issues", params={"status": "archived"}, headers=auth(citizen))
    assert r.status_code == 200
    assert r.json()["pagination"]["totalCount"] == 0


def test_category_and_reporter_filters(client, citizen, neighbor):
    mine = create_issue(client, citizen, category="graffiti")["id"]
    create_issue(client, neighbor, category="pothole")
    r = client.get("/issues", params={"category": "graffiti"}, headers=auth(citizen))
    assert [i["id"] for i in r.json()["issues"]] == [mine]
    r = client.get("/issues", params={"reportedBy": citizen.id}, headers=auth(citizen))
    assert [i["id"] for i in r.json()["issues"]] == [mine]


def test_text_search_matches_any_term(client, citizen):
    a = create_issue(client, citizen, title="Flooded underpass", description="Water pooling under the bridge")["id"]
    b = create_issue(client, citizen, title="Broken swing", description="Playground swing chain snapped")["id"]
    create_issue(client, citizen, title="Dark corner", description="Lamp not working")
    r = client.get("/issues", params={"search": "FLOODED swing"}, headers=auth(citizen))
    assert sorted(i["id"] for i in r.json()["issues"]) == sorted([a, b])


def test_text_search_treats_wildcards_literally(client, citizen):
    create_issue(client, citizen, title="Broken bench", description="Seat slats missing")
    pct = create_issue(client, citizen, title="Fare up 50% on route_9", description="Bus stop sign wrong")["id"]
    for term in ("%", "_"):
        r = client.get("/issues", params={"search": term}, headers=auth(citizen))
        assert [i["id"] for i in r.json()["issues"]] == [pct]
    r = client.get("/issues", params={"search": "\\"}, headers=auth(citizen))
    assert r.json()["issues"] == []


def test_huge_page_number_returns_empty_page(client, citizen):
    create_issue(client, citizen)
    r = client.get("/issues", params={"page": "100000000000000000000"}, headers=auth(citizen))
    assert r.status_code == 200
    assert r.json()["issues"] == []
    assert r.json()["pagination"]["totalCount"] == 1


def test_pagination_metadata(client, citizen):
    for n in range(5):
        create_issue(client, citizen, title=f"Issue {n}")
    r = client.get("/issues", params={"limit": 2}, headers=auth(citizen))
    body = r.json()
    assert len(body["issues"]) == 2
    assert body["pagination"] == {
        "currentPage": 1,
        "totalPages": 3,
        "totalCount": 5,
        "limit": 2,
        "hasNextPage": True,
        "hasPrevPage": False,
    }
    last = client.get("/issues", params={"limit": 2, "page": 3}, headers=auth(citizen)).json()
    assert len(last["issues"]) == 1
    assert last["pagination"]["hasNextPage"] is False
    assert last["pagination"]["hasPrevPage"] is True

    pages = [client.get("/issues", params={"limit": 2, "page": p}, headers=auth(citizen)).json() for p in (1, 2, 3)]
    seen = [i["id"] for page in pages for i in page["issues"]]
    assert len(seen) == len(set(seen)) == 5


def test_limit_is_clamped_and_lenient(client, citizen, admin):
    create_issue(client, citizen)
    r = client.get("/issues", params={"limit": 5000}, headers=auth(citizen))
    assert r.json()["pagination"]["limit"] == 100
    r = client.get("/issues", params={"limit": 5000}, headers=auth(admin))
    assert r.json()["pagination"]["limit"] == 1000
    r = client.get("/issues", params={"limit": "lots", "page": "first"}, headers=auth(citizen))
    assert r.json()["pagination"]["limit"] == 20
    assert r.json()["pagination"]["currentPage"] == 1
    total = r.json()["pagination"]["totalCount"]
    assert r.json()["pagination"]["totalPages"] == math.ceil(total / 20)


def test_default_sort_is_newest_first(client, citizen):
    first = create_issue(client, citizen, title="First")["id"]
    second = create_issue(client, citizen, title="Second")["id"]
    ids = [i["id"] for i in client.get("/issues", headers=auth(citizen)).json()["issues"]]
    assert ids == [second, first]
    ids = [i["id"] for i in client.get("/issues", params={"sortOrder": "asc"}, headers=auth(citizen)).json()["issues"]]
    assert ids == [first, second]


def test_unknown_sort_key_still_lists(client, citizen):
    create_issue(client, citizen)
    r = client.get("/issues", params={"sortBy": "nonsense"}, headers=auth(citizen))
    assert r.status_code == 200
    assert r.json()["pagination"]["totalCount"] == 1


def test_sort_by_priority(client, citizen):
    low = create_issue(client, citizen, priority="low")["id"]
    urgent = create_issue(client, citizen, priority="urgent")["id"]
    high = create_issue(client, citizen, priority="high")["id"]
    r = client.get("/issues", params={"sortBy": "priority", "sortOrder": "desc"}, headers=auth(citizen))
    assert [i["id"] for i in r.json()["issues"]] == [urgent, high, low]


# -------------------------------------------------------
# Visibility
# -------------------------------------------------------

def test_private_issue_hidden_from_other_users(client, citizen, neighbor, admin):
    issue_id = create_issue(client, citizen)["id"]
    r = client.put(f"/issues/{issue_id}", json={"isPublic": False}, headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["isPublic"] is False

    assert client.get(f"/issues/{issue_id}", headers=auth(neighbor)).status_code == 403
    listing = client.get("/issues", headers=auth(neighbor)).json()
    assert issue_id not in [i["id"] for i in listing["issues"]]

    assert client.get(f"/issues/{issue_id}", headers=auth(citizen)).status_code == 200
    listing = client.get("/issues", headers=auth(citizen)).json()
    assert issue_id in [i["id"] for i in listing["issues"]]

    listing = client.get("/issues", headers=auth(admin)).json()
    assert issue_id in [i["id"] for i in listing["issues"]]


def test_visibility_combines_with_filters(client, citizen, neighbor, admin):
    private = create_issue(client, citizen, category="graffiti")["id"]
    client.put(f"/issues/{private}", json={"isPublic": False}, headers=auth(admin))
    public = create_issue(client, neighbor, category="graffiti")["id"]
    r = client.get("/issues", params={"category": "graffiti"}, headers=auth(neighbor))
    assert [i["id"] for i in r.json()["issues"]] == [public]
    assert r.json()["pagination"]["totalCount"] == 1


def test_emails_only_shown_to_admins_and_self(client, citizen, neighbor, admin):
    issue_id = create_issue(client, citizen)["id"]
    assert client.get(f"/issues/{issue_id}", headers=auth(neighbor)).json()["reportedBy"]["email"] is None
    assert client.get(f"/issues/{issue_id}", headers=auth(citizen)).json()["reportedBy"]["email"] == citizen.email
    assert client.get(f"/issues/{issue_id}", headers=auth(admin)).json()["reportedBy"]["email"] == citizen.email


def test_inactive_user_is_forbidden(client, citizen, db_session):
    citizen.is_active = False
    db_session.commit()
    assert client.get("/issues", headers=auth(citizen)).status_code == 403
