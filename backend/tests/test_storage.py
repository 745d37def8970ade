import io

import pytest
from botocore.exceptions import ClientError

from bucketproxy.buckets import BucketRegistry, InvalidBucketError
from bucketproxy.storage import (
    DIRECTORY_ETAG,
    LIST_PAGE_SIZE,
    TRANSFER_CONFIG,
    ObjectNotFoundError,
    StorageGateway,
)


@pytest.fixture()
def gateway(stub_s3):
    registry = BucketRegistry.from_names(["raw-id-1", "raw-id-2"], ["docs", "media"])
    return StorageGateway(registry, stub_s3)


def test_invalid_bucket_never_reaches_backend(gateway, stub_s3):
    operations = [
        lambda: gateway.get_object("nope", "a.txt"),
        lambda: gateway.head_object("nope", "a.txt"),
        lambda: gateway.list_objects("nope"),
        lambda: gateway.put_object("nope", "a.txt", io.BytesIO(b"x")),
        lambda: gateway.delete_object("nope", "a.txt"),
        lambda: gateway.copy_object("nope", "a.txt", "b.txt"),
        lambda: gateway.move_object("nope", "a.txt", "b.txt"),
    ]
    for operation in operations:
        with pytest.raises(InvalidBucketError):
            operation()

    assert stub_s3.calls == []


def test_get_object_resolves_alias(gateway, stub_s3):
    stub_s3.storage[("raw-id-1", "report.pdf")] = (b"%PDF", "application/pdf")

    stored = gateway.get_object("docs", "report.pdf")

    assert stub_s3.calls[0] == ("get_object", {"Bucket": "raw-id-1", "Key": "report.pdf"})
    assert b"".join(stored.iter_chunks(chunk_size=2)) == b"%PDF"
    assert stored.content_type == "application/pdf"
    assert stored.content_length == 4
    stored.close()
    assert stub_s3.bodies[0].closed


def test_missing_object_raises_not_found(gateway):
    with pytest.raises(ObjectNotFoundError):
        gateway.get_object("raw-id-1", "missing.txt")
    with pytest.raises(ObjectNotFoundError):
        gateway.head_object("docs", "missing.txt")


def test_other_backend_errors_propagate(gateway, stub_s3):
    def denied(**kwargs):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "GetObject")

    stub_s3.get_object = denied

    with pytest.raises(ClientError):
        gateway.get_object("docs", "report.pdf")


def test_list_objects_synthesizes_directories(gateway, stub_s3):
    stub_s3.storage[("raw-id-2", "photos/a.jpg")] = (b"aaa", "image/jpeg")
    stub_s3.storage[("raw-id-2", "photos/b.jpg")] = (b"bb", "image/jpeg")
    stub_s3.storage[("raw-id-2", "readme.txt")] = (b"hello", "text/plain")

    listing = gateway.list_objects("media")

    params = stub_s3.calls[0][1]
    assert params["Bucket"] == "raw-id-2"
    assert params["Delimiter"] == "/"
    assert params["MaxKeys"] == LIST_PAGE_SIZE
    assert "ContinuationToken" not in params

    files = [entry for entry in listing.entries if not entry.is_directory]
    folders = [entry for entry in listing.entries if entry.is_directory]
    assert [(f.key, f.size, f.etag) for f in files] == [("readme.txt", 5, "etag")]
    assert files[0].last_modified == "2024-01-01T12:00:00+00:00"
    assert [(f.key, f.size, f.etag) for f in folders] == [("photos/", 0, DIRECTORY_ETAG)]
    assert listing.next_continuation_token is None


def test_list_objects_passes_continuation_token(gateway, stub_s3):
    def truncated(**params):
        stub_s3.calls.append(("list_objects_v2", params))
        return {"Contents": [], "IsTruncated": True, "NextContinuationToken": "page-2"}

    stub_s3.list_objects_v2 = truncated

    listing = gateway.list_objects("docs", prefix="logs/", continuation_token="page-1")

    params = stub_s3.calls[0][1]
    assert params["Prefix"] == "logs/"
    assert params["ContinuationToken"] == "page-1"
    assert listing.next_continuation_token == "page-2"
    assert listing.entries == []


def test_put_object_streams_with_transfer_config(gateway, stub_s3):
    gateway.put_object("docs", "notes/today.txt", io.BytesIO(b"hi"), "text/plain")

    name, kwargs = stub_s3.calls[0]
    assert name == "upload_fileobj"
    assert kwargs["Bucket"] == "raw-id-1"
    assert kwargs["ExtraArgs"] == {"ContentType": "text/plain"}
    assert kwargs["Config"] is TRANSFER_CONFIG
    assert stub_s3.storage[("raw-id-1", "notes/today.txt")] == (b"hi", "text/plain")


def test_copy_object_keeps_source(gateway, stub_s3):
    stub_s3.storage[("raw-id-1", "a.txt")] = (b"a", "text/plain")

    gateway.copy_object("docs", "a.txt", "b.txt")

    assert ("raw-id-1", "a.txt") in stub_s3.storage
    assert ("raw-id-1", "b.txt") in stub_s3.storage
    assert stub_s3.calls[0][1]["CopySource"] == {"Bucket": "raw-id-1", "Key": "a.txt"}


def test_copy_missing_source_raises_not_found(gateway):
    with pytest.raises(ObjectNotFoundError) as excinfo:
        gateway.copy_object("docs", "missing.txt", "b.txt")

    assert excinfo.value.key == "missing.txt"


def test_move_object_copies_then_deletes(gateway, stub_s3):
    stub_s3.storage[("raw-id-1", "a.txt")] = (b"a", "text/plain")

    gateway.move_object("docs", "a.txt", "archive/a.txt")

    assert [name for name, _ in stub_s3.calls] == ["copy_object", "delete_object"]
    assert ("raw-id-1", "a.txt") not in stub_s3.storage
    assert ("raw-id-1", "archive/a.txt") in stub_s3.storage


def test_move_object_failed_delete_leaves_both_keys(gateway, stub_s3):
    stub_s3.storage[("raw-id-1", "a.txt")] = (b"a", "text/plain")
    stub_s3.fail_delete = True

    with pytest.raises(ClientError):
        gateway.move_object("docs", "a.txt", "archive/a.txt")

    assert ("raw-id-1", "a.txt") in stub_s3.storage
    assert ("raw-id-1", "archive/a.txt") in stub_s3.storage
