"""Tests for delete and rename endpoints."""


def test_delete_single_file(client, store, catalog):
    catalog.record_object(store.put("videos/a.mp4", b"a"))

    response = client.delete("/api/v1/file", params={"id": "videos/a.mp4"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "mode": "file", "id": "videos/a.mp4"}
    assert catalog.get_file("videos/a.mp4") is None


def test_delete_prefix(client, store):
    store.put("videos/a.mp4", b"a")
    store.put("videos/b.mp4", b"b")
    store.fail_delete.add("videos/b.mp4")

    response = client.delete("/api/v1/file", params={"id": "videos"})

    assert response.status_code == 200
    data = response.json()
    assert data["mode"] == "prefix"
    assert data["prefix"] == "videos/"
    assert data["deletedCount"] == 1
    assert data["failedCount"] == 1
    assert data["failures"][0]["key"] == "videos/b.mp4"


def test_delete_not_found(client):
    response = client.delete("/api/v1/file", params={"id": "nothing/here"})

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_delete_requires_id(client):
    response = client.delete("/api/v1/file")

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing file id"


def test_rename(client, store, catalog):
    catalog.record_object(store.put("videos/old.mp4", b"payload"))

    response = client.post("/api/v1/rename", json={"oldPath": "videos/old.mp4", "newName": "new.mp4"})

    assert response.status_code == 200
    assert response.json() == {
        "file": {"oldPath": "videos/old.mp4", "newPath": "videos/new.mp4", "name": "new.mp4"}
    }
    assert "videos/new.mp4" in store.objects
    assert catalog.get_file("videos/new.mp4") is not None


def test_rename_invalid_name(client, store):
    store.put("videos/old.mp4", b"payload")

    response = client.post("/api/v1/rename", json={"oldPath": "videos/old.mp4", "newName": "a/b.mp4"})

    assert response.status_code == 400
    assert "videos/old.mp4" in store.objects


def test_rename_missing_source(client):
    response = client.post("/api/v1/rename", json={"oldPath": "none.mp4", "newName": "x.mp4"})

    assert response.status_code == 404


def test_rename_without_body(client):
    response = client.post("/api/v1/rename")

    assert response.status_code == 400
