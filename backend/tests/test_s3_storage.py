from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from filegate.core.exceptions import InvalidKey, NotFound, StorageFault
from filegate.storage.s3_storage import S3ObjectStore


def client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def s3_store(s3_client):
    return S3ObjectStore(s3_client, "test-bucket", presigned_expires=3600)


def test_init_keeps_existing_bucket(s3_store, s3_client):
    s3_store.init()
    s3_client.head_bucket.assert_called_once_with(Bucket="test-bucket")
    s3_client.create_bucket.assert_not_called()


def test_init_creates_missing_bucket(s3_store, s3_client):
    s3_client.head_bucket.side_effect = client_error("404", "HeadBucket")
    s3_store.init()
    s3_client.create_bucket.assert_called_once_with(Bucket="test-bucket")


def test_init_fails_on_access_denied(s3_store, s3_client):
    s3_client.head_bucket.side_effect = client_error("403", "HeadBucket")
    with pytest.raises(StorageFault):
        s3_store.init()


def test_put_sends_content_type_and_metadata(s3_store, s3_client):
    written = s3_store.put(
        "1-a.txt", b"hello", {"originalName": "a.txt", "contentType": "text/plain"}
    )
    assert written == 5
    kwargs = s3_client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "test-bucket"
    assert kwargs["Key"] == "1-a.txt"
    assert kwargs["Body"] == b"hello"
    assert kwargs["ContentType"] == "text/plain"
    assert kwargs["Metadata"] == {"originalName": "a.txt", "size": "5"}


def test_put_rejects_traversal_key(s3_store, s3_client):
    with pytest.raises(InvalidKey):
        s3_store.put("../escape", b"x", {})
    s3_client.put_object.assert_not_called()


def test_get_maps_head_object(s3_store, s3_client):
    modified = datetime(2024, 5, 1, tzinfo=timezone.utc)
    s3_client.head_object.return_value = {
        "ContentLength": 5,
        "LastModified": modified,
        "ETag": '"abc"',
        "ContentType": "text/plain",
        "Metadata": {"originalname": "a.txt"},
    }
    info = s3_store.get("1-a.txt")
    assert info.size == 5
    assert info.last_modified == modified
    assert info.original_name == "a.txt"
    assert info.content_type == "text/plain"


def test_get_missing_object_returns_none(s3_store, s3_client):
    s3_client.head_object.side_effect = client_error("404")
    assert s3_store.get("nope") is None


def test_list_is_newest_first(s3_store, s3_client):
    older = datetime(2024, 1, 1, tzinfo=timezone.utc)
    newer = datetime(2024, 2, 1, tzinfo=timezone.utc)
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Contents": [{"Key": "old", "Size": 1, "LastModified": older, "ETag": '"1"'}]},
        {"Contents": [{"Key": "new", "Size": 2, "LastModified": newer, "ETag": '"2"'}]},
    ]
    s3_client.get_paginator.return_value = paginator

    assert [info.key for info in s3_store.list()] == ["new", "old"]


def test_list_failure_degrades_to_empty(s3_store, s3_client):
    s3_client.get_paginator.return_value.paginate.side_effect = client_error(
        "AccessDenied", "ListObjectsV2"
    )
    assert s3_store.list() == []


def test_delete_is_idempotent(s3_store, s3_client):
    s3_store.delete("1-a.txt")
    s3_client.delete_object.side_effect = client_error("NoSuchKey", "DeleteObject")
    s3_store.delete("1-a.txt")
    assert s3_client.delete_object.call_count == 2


def test_open_streams_body(s3_store, s3_client):
    body = MagicMock()
    body.iter_chunks.return_value = iter([b"hel", b"lo"])
    s3_client.get_object.return_value = {
        "Body": body,
        "ContentLength": 5,
        "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "ContentType": "text/plain",
        "Metadata": {},
    }
    info, chunks = s3_store.open("1-a.txt")
    assert info.original_name == "1-a.txt"
    assert b"".join(chunks) == b"hello"


def test_open_missing_object_raises_not_found(s3_store, s3_client):
    s3_client.get_object.side_effect = client_error("NoSuchKey", "GetObject")
    with pytest.raises(NotFound):
        s3_store.open("nope")


def test_presigned_url(s3_store, s3_client):
    s3_client.generate_presigned_url.return_value = "https://signed.example/a"
    assert s3_store.presigned_url("1-a.txt") == "https://signed.example/a"
    s3_client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "test-bucket", "Key": "1-a.txt"},
        ExpiresIn=3600,
    )
    assert s3_store.presigned_url_expires == 3600


def test_build_key_never_repeats(s3_store):
    keys = [s3_store.build_key("same.txt") for _ in range(1000)]
    assert len(set(keys)) == len(keys)
    assert all(key.endswith("-same.txt") for key in keys)


def test_non_ascii_metadata_is_percent_encoded(s3_store, s3_client):
    s3_store.put("1-r.txt", b"x", {"originalName": "résumé 100%.txt", "contentType": "text/plain"})
    sent = s3_client.put_object.call_args.kwargs["Metadata"]
    assert all(value.isascii() for value in sent.values())
    assert sent["originalName"] == "r%C3%A9sum%C3%A9 100%25.txt"

    s3_client.head_object.return_value = {
        "ContentLength": 1,
        "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "Metadata": {"originalname": sent["originalName"]},
    }
    assert s3_store.get("1-r.txt").original_name == "résumé 100%.txt"
