from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from filegate.core.config import Settings
from filegate.core.context import StorageContext
from filegate.main import create_app

BASE = "/api/s3/files"


def upload(client, content=b"hello", name="doc.txt", owner_id="user-1", task_id=None, headers=None):
    data = {}
    if owner_id is not None:
        data["owner_id"] = owner_id
    if task_id is not None:
        data["task_id"] = task_id
    return client.post(
        BASE,
        files={"file": (name, content, "text/plain")},
        data=data,
        headers=headers or {},
    )


@pytest.fixture
def staged_area(client):
    return client.app.state.context.staged_store


def test_upload_returns_summary(client, staged_area):
    res = upload(client, task_id="task-1")
    assert res.status_code == 201
    body = res.json()
    assert set(body) == {"file_id", "filename", "created_at", "size", "owner_id", "task_id"}
    assert body["filename"] == "doc.txt"
    assert body["size"] == 5
    assert body["owner_id"] == "user-1"
    assert body["task_id"] == "task-1"

    blob = staged_area.files_dir / body["file_id"][:2] / body["file_id"]
    assert blob.read_bytes() == b"hello"
    assert list(staged_area.temp_dir.iterdir()) == []


def test_upload_takes_owner_from_gateway_header(client):
    res = upload(client, owner_id=None, headers={"X-User-Id": "gateway-user"})
    assert res.status_code == 201
    assert res.json()["owner_id"] == "gateway-user"


def test_upload_without_owner_is_rejected(client, staged_area):
    res = upload(client, owner_id=None)
    assert res.status_code == 400
    assert res.json() == {"error": "Incorrect request", "code": "MISSING_OWNER_ID"}
    assert list(staged_area.temp_dir.iterdir()) == []
    assert list(staged_area.files_dir.rglob("*")) == []


def test_upload_without_file(client):
    res = client.post(BASE, data={"owner_id": "user-1"})
    assert res.status_code == 400
    assert res.json()["code"] == "NO_FILE"


def test_upload_over_size_limit(client, settings, staged_area):
    settings.MAX_FILE_SIZE = 3
    res = upload(client, content=b"too big")
    assert res.status_code == 413
    assert list(staged_area.temp_dir.iterdir()) == []


def test_list_newest_first_with_pagination(client):
    ids = [upload(client, name=f"{i}.txt").json()["file_id"] for i in range(5)]

    everything = [item["file_id"] for item in client.get(BASE).json()]
    assert sorted(everything) == sorted(ids)
    assert everything[-1] == ids[0]

    pages = []
    for offset in (0, 2, 4):
        res = client.get(BASE, params={"limit": 2, "offset": offset})
        assert res.status_code == 200
        pages.append([item["file_id"] for item in res.json()])
    assert [len(page) for page in pages] == [2, 2, 1]
    assert pages[0] + pages[1] + pages[2] == everything


def test_list_ignores_malformed_paging_values(client):
    upload(client)
    res = client.get(BASE, params={"limit": "abc", "offset": "-4"})
    assert res.status_code == 200
    assert len(res.json()) == 1


def test_list_filters_by_owner_and_task(client):
    upload(client, owner_id="alice", task_id="t1")
    upload(client, owner_id="alice", task_id="t2")
    upload(client, owner_id="bob", task_id="t1")

    assert len(client.get(BASE, params={"user_id": "alice"}).json()) == 2
    assert len(client.get(BASE, params={"task_id": "t1"}).json()) == 2
    by_header = client.get(BASE, headers={"X-User-Id": "bob"}).json()
    assert [item["owner_id"] for item in by_header] == ["bob"]


def test_download_streams_with_stored_content_type(client):
    file_id = upload(client, content=b"payload").json()["file_id"]
    res = client.get(f"{BASE}/{file_id}")
    assert res.status_code == 200
    assert res.content == b"payload"
    assert res.headers["content-type"].startswith("text/plain")
    assert "doc.txt" in res.headers["content-disposition"]


def test_download_unknown_id(client):
    res = client.get(f"{BASE}/no-such-id")
    assert res.status_code == 404
    assert res.json() == {"error": "Resource not found", "code": "NOT_FOUND"}


def test_download_with_missing_blob(client, staged_area):
    file_id = upload(client).json()["file_id"]
    (staged_area.files_dir / file_id[:2] / file_id).unlink()

    res = client.get(f"{BASE}/{file_id}")
    assert res.status_code == 404
    assert res.json()["code"] == "FILE_MISSING"


def test_delete_hides_object_but_keeps_blob(client, staged_area):
    file_id = upload(client).json()["file_id"]

    res = client.delete(f"{BASE}/{file_id}")
    assert res.status_code == 204
    assert res.content == b""

    assert client.get(f"{BASE}/{file_id}").json()["code"] == "NOT_FOUND"
    assert client.get(BASE).json() == []
    assert (staged_area.files_dir / file_id[:2] / file_id).exists()


def test_delete_unknown_id(client):
    res = client.delete(f"{BASE}/no-such-id")
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"


def test_local_mode_serves_both_apis(client):
    assert client.get("/api/storage/files").status_code == 200
    assert client.get(BASE).status_code == 200


@pytest.fixture
def cloud_client(tmp_path):
    settings = Settings(
        _env_file=None,
        AWS_ACCESS_KEY_ID="AKIATEST",
        AWS_SECRET_ACCESS_KEY="secret",
        AWS_S3_BUCKET_NAME="test-bucket",
        S3_DB_DIR=str(tmp_path),
        ENABLE_SCHEDULER=False,
    )
    s3_client = MagicMock()
    context = StorageContext(settings, s3_client=s3_client)
    with TestClient(create_app(settings, context=context)) as test_client:
        yield test_client, s3_client


def test_cloud_mode_serves_storage_api_over_s3(cloud_client):
    client, s3_client = cloud_client
    s3_client.head_bucket.assert_called_once_with(Bucket="test-bucket")
    s3_client.head_object.return_value = {
        "ContentLength": 5,
        "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "ETag": '"abc"',
        "ContentType": "text/plain",
        "Metadata": {"originalname": "a.txt"},
    }

    res = client.post("/api/s3/upload", files={"file": ("a.txt", b"hello", "text/plain")})
    assert res.status_code == 200
    file = res.json()["file"]
    assert file["bucket"] == "test-bucket"
    assert file["originalName"] == "a.txt"
    assert s3_client.put_object.call_args.kwargs["Body"] == b"hello"


def test_cloud_mode_preview_is_presigned(cloud_client):
    client, s3_client = cloud_client
    s3_client.head_object.return_value = {
        "ContentLength": 1,
        "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }
    s3_client.generate_presigned_url.return_value = "https://signed.example/a"

    res = client.get("/api/s3/preview/1-a.txt")
    assert res.status_code == 200
    assert res.json() == {"success": True, "url": "https://signed.example/a", "expiresIn": 3600}


def test_cloud_mode_has_no_local_routes(cloud_client):
    client, _ = cloud_client
    assert client.get("/api/storage/files").status_code == 404
