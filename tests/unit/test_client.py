"""Tests for IngestionClient against a mocked transport."""

import asyncio
import json

import httpx
import pytest

from bundle_pipeline.client import BundleJob, IngestionClient
from bundle_pipeline.core.exceptions import AuthError, ValidationError
from bundle_pipeline.core.progress import CompleteEvent, ErrorEvent, ProgressPhase, ProgressUpdate
from bundle_pipeline.core.sse import encode_event


def _stream_body(target):
    if target == "broken":
        events = [
            ProgressUpdate(phase=ProgressPhase.EXTRACTING, message="Extracting files...", percentage=5),
            ErrorEvent(message="No main configuration document", percentage=5),
        ]
    else:
        events = [
            ProgressUpdate(phase=ProgressPhase.EXTRACTING, message="Extracting files...", percentage=5),
            ProgressUpdate(phase=ProgressPhase.IMAGES_UPLOADED, message="All images uploaded", percentage=95),
            CompleteEvent(message="Processing complete", image_count=2),
        ]
    return "".join(encode_event(e) for e in events).encode("utf-8")


def _handler(request: httpx.Request) -> httpx.Response:
    if request.headers.get("Authorization") != "Bearer secret":
        return httpx.Response(401, json={"ok": False, "error": "Unauthorized"})
    body = request.content.decode("latin-1")
    target = "broken" if 'name="targetResourceId"\r\n\r\nbroken' in body else "ok"
    if request.url.path == "/api/upload-bundle-stream":
        return httpx.Response(
            200, content=_stream_body(target), headers={"Content-Type": "text/event-stream"}
        )
    if request.url.path == "/api/upload-bundle":
        return httpx.Response(200, json={"ok": True, "assetCount": 2})
    return httpx.Response(404)


def _client(token="secret"):
    return IngestionClient("http://test", token, transport=httpx.MockTransport(_handler))


class TestIngestionClient:
    def test_stream_bundle_yields_events(self):
        async def scenario():
            async with _client() as client:
                return [e async for e in client.stream_bundle("a.zip", b"PK", "o", "p1")]

        events = asyncio.run(scenario())
        assert [e.type for e in events] == ["progress", "progress", "complete"]
        assert events[-1].image_count == 2

    def test_rejected_request_raises_before_streaming(self):
        async def scenario():
            async with _client(token="wrong") as client:
                return [e async for e in client.stream_bundle("a.zip", b"PK", "o", "p1")]

        with pytest.raises(AuthError, match="Unauthorized"):
            asyncio.run(scenario())

    def test_upload_bundle(self):
        async def scenario():
            async with _client() as client:
                return await client.upload_bundle("a.zip", b"PK", "o", "p1")

        assert asyncio.run(scenario()) == {"ok": True, "assetCount": 2}

    def test_ingest_many_reports_overall_progress(self):
        progress = []

        async def scenario():
            async with _client() as client:
                return await client.ingest_many(
                    [
                        BundleJob("a.zip", b"PK", "p1"),
                        BundleJob("b.zip", b"PK", "broken"),
                    ],
                    owner_id="o",
                    on_progress=lambda overall, index, event: progress.append((index, overall)),
                )

        outcomes = asyncio.run(scenario())

        assert isinstance(outcomes[0], CompleteEvent)
        assert isinstance(outcomes[1], ErrorEvent)
        assert progress == [(0, 2.5), (0, 47.5), (0, 50.0), (1, 52.5), (1, 52.5)]
        overall = [value for _, value in progress]
        assert overall == sorted(overall)

    def test_ingest_many_continues_after_rejection(self):
        async def scenario():
            async with _client(token="wrong") as client:
                return await client.ingest_many([BundleJob("a.zip", b"PK", "p1")], owner_id="o")

        outcomes = asyncio.run(scenario())
        assert isinstance(outcomes[0], ErrorEvent)
        assert outcomes[0].message == "Unauthorized"


def test_validation_error_mapping():
    def handler(request):
        return httpx.Response(400, json={"ok": False, "error": "Only ZIP files are allowed"})

    async def scenario():
        client = IngestionClient("http://test", "t", transport=httpx.MockTransport(handler))
        try:
            await client.upload_bundle("a.rar", b"x", "o", "p")
        finally:
            await client.aclose()

    with pytest.raises(ValidationError, match="Only ZIP files"):
        asyncio.run(scenario())
