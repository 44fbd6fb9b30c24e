"""Tests for S3AssetStorage with a mocked aioboto3 session."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from bundle_pipeline.core.error_handling import is_retryable_storage_error
from bundle_pipeline.core.exceptions import StorageError, StorageUnavailableError
from bundle_pipeline.core.models import PipelineSettings
from bundle_pipeline.storage import S3AssetStorage


class _Pages:
    def __init__(self, pages):
        self._pages = pages

    def paginate(self, **kwargs):
        async def iterate():
            for page in self._pages:
                yield page

        return iterate()


def _session(client):
    session = MagicMock()

    @asynccontextmanager
    async def open_client(*args, **kwargs):
        yield client

    session.client.side_effect = open_client
    return session


def _client():
    client = MagicMock()
    client.put_object = AsyncMock(return_value={})
    client.delete_objects = AsyncMock(return_value={})
    return client


def _run(storage, operation):
    async def scenario():
        async with storage:
            return await operation(storage)

    return asyncio.run(scenario())


class TestS3AssetStorage:
    def test_upload_puts_object_with_content_type(self):
        client = _client()
        storage = S3AssetStorage("files", session=_session(client))

        key = _run(storage, lambda s: s.upload("o/p/a.png", b"data", "image/png"))

        assert key == "o/p/a.png"
        client.put_object.assert_awaited_once_with(
            Bucket="files", Key="o/p/a.png", Body=b"data", ContentType="image/png"
        )

    def test_delete_in_chunks_of_1000(self):
        client = _client()
        storage = S3AssetStorage("files", session=_session(client))
        keys = [f"o/p/{i}.png" for i in range(2500)]

        _run(storage, lambda s: s.delete(keys))

        sizes = [len(call.kwargs["Delete"]["Objects"]) for call in client.delete_objects.await_args_list]
        assert sizes == [1000, 1000, 500]

    def test_delete_reports_per_key_errors(self):
        client = _client()
        client.delete_objects.return_value = {"Errors": [{"Key": "o/p/a.png"}]}
        storage = S3AssetStorage("files", session=_session(client))

        with pytest.raises(StorageError, match="o/p/a.png"):
            _run(storage, lambda s: s.delete(["o/p/a.png"]))

    def test_list_keys_paginates(self):
        client = _client()
        client.get_paginator.return_value = _Pages(
            [{"Contents": [{"Key": "o/p/a.png"}]}, {"Contents": [{"Key": "o/p/b.png"}]}, {}]
        )
        storage = S3AssetStorage("files", session=_session(client))

        assert _run(storage, lambda s: s.list_keys("o/p/")) == ["o/p/a.png", "o/p/b.png"]
        client.get_paginator.assert_called_once_with("list_objects_v2")

    def test_client_error_is_storage_error_with_cause(self):
        client = _client()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "SlowDown", "Message": "slow"}}, "PutObject"
        )
        storage = S3AssetStorage("files", session=_session(client))

        with pytest.raises(StorageError) as excinfo:
            _run(storage, lambda s: s.upload("o/p/a.png", b"x", "image/png"))

        assert not isinstance(excinfo.value, StorageUnavailableError)
        assert is_retryable_storage_error(excinfo.value)

    def test_connection_error_is_unavailable(self):
        client = _client()
        client.put_object.side_effect = EndpointConnectionError(endpoint_url="http://s3")
        storage = S3AssetStorage("files", session=_session(client))

        with pytest.raises(StorageUnavailableError):
            _run(storage, lambda s: s.upload("o/p/a.png", b"x", "image/png"))

    def test_closed_storage_is_unavailable(self):
        storage = S3AssetStorage("files", session=_session(_client()))
        with pytest.raises(StorageUnavailableError):
            asyncio.run(storage.upload("k", b"x", "image/png"))

    @pytest.mark.parametrize(
        "kwargs,expected",
        [
            ({"public_base_url": "https://cdn.test/"}, "https://cdn.test/o/p/a.png"),
            ({"endpoint_url": "http://minio:9000"}, "http://minio:9000/files/o/p/a.png"),
            ({"region_name": "eu-west-1"}, "https://files.s3.eu-west-1.amazonaws.com/o/p/a.png"),
        ],
    )
    def test_public_url(self, kwargs, expected):
        storage = S3AssetStorage("files", session=MagicMock(), **kwargs)
        assert storage.public_url("o/p/a.png") == expected

    def test_from_settings(self):
        settings = PipelineSettings(storage_bucket="assets", public_base_url="https://cdn.test")
        storage = S3AssetStorage.from_settings(settings)
        assert storage.bucket == "assets"
        assert storage.public_url("k") == "https://cdn.test/k"
