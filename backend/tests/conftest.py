import io
from datetime import datetime, timezone

import anyio
import httpx
import pytest
from botocore.exceptions import ClientError

from bucketproxy.config import Settings
from main import create_app

LAST_MODIFIED = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class StubS3Client:
    """In-memory stand-in for the boto3 S3 client methods the gateway uses."""

    def __init__(self):
        self.storage = {}
        self.calls = []
        self.fail_delete = False
        self.bodies = []

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))

    def get_object(self, Bucket, Key):
        self._record("get_object", Bucket=Bucket, Key=Key)
        if (Bucket, Key) not in self.storage:
            raise client_error("NoSuchKey", "GetObject")
        data, content_type = self.storage[(Bucket, Key)]
        body = io.BytesIO(data)
        self.bodies.append(body)
        response = {
            "Body": body,
            "ContentLength": len(data),
            "ETag": '"etag"',
            "LastModified": LAST_MODIFIED,
        }
        if content_type:
            response["ContentType"] = content_type
        return response

    def head_object(self, Bucket, Key):
        self._record("head_object", Bucket=Bucket, Key=Key)
        if (Bucket, Key) not in self.storage:
            raise client_error("404", "HeadObject")
        data, content_type = self.storage[(Bucket, Key)]
        return {"ContentLength": len(data), "ContentType": content_type, "ETag": '"etag"'}

    def list_objects_v2(self, **params):
        self._record("list_objects_v2", **params)
        prefix = params.get("Prefix", "")
        delimiter = params.get("Delimiter")
        contents, prefixes = [], []
        for bucket, key in sorted(self.storage):
            if bucket != params["Bucket"] or not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            if delimiter and delimiter in rest:
                common = prefix + rest.split(delimiter, 1)[0] + delimiter
                if {"Prefix": common} not in prefixes:
                    prefixes.append({"Prefix": common})
                continue
            contents.append(
                {
                    "Key": key,
                    "Size": len(self.storage[(bucket, key)][0]),
                    "LastModified": LAST_MODIFIED,
                    "ETag": '"etag"',
                }
            )
        return {"Contents": contents, "CommonPrefixes": prefixes, "IsTruncated": False}

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None, Config=None):
        self._record("upload_fileobj", Bucket=Bucket, Key=Key, ExtraArgs=ExtraArgs, Config=Config)
        content_type = (ExtraArgs or {}).get("ContentType")
        self.storage[(Bucket, Key)] = (Fileobj.read(), content_type)

    def delete_object(self, Bucket, Key):
        self._record("delete_object", Bucket=Bucket, Key=Key)
        if self.fail_delete:
            raise client_error("InternalError", "DeleteObject")
        self.storage.pop((Bucket, Key), None)

    def copy_object(self, Bucket, Key, CopySource):
        self._record("copy_object", Bucket=Bucket, Key=Key, CopySource=CopySource)
        source = (CopySource["Bucket"], CopySource["Key"])
        if source not in self.storage:
            raise client_error("NoSuchKey", "CopyObject")
        self.storage[(Bucket, Key)] = self.storage[source]


@pytest.fixture()
def stub_s3():
    return StubS3Client()


@pytest.fixture()
def make_settings():
    def factory(**overrides) -> Settings:
        values = dict(
            access_key_id="test",
            secret_access_key="secret",
            bucket_names=("raw-id-1", "raw-id-2"),
            friendly_bucket_names=("docs", "media"),
            endpoint="http://storage.local",
            private_token="hunter2",
            app_env="test",
        )
        values.update(overrides)
        return Settings(**values)

    return factory


@pytest.fixture()
def app(make_settings, stub_s3):
    return create_app(make_settings(), storage_client=stub_s3)


@pytest.fixture()
def client(app):
    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")
    yield async_client
    anyio.run(async_client.aclose)

