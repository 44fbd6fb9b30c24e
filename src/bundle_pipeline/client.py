"""Async HTTP client for the ingestion endpoints."""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

import httpx

from .core.exceptions import AuthError, BundlePipelineError, ValidationError
from .core.logging_config import get_logger
from .core.progress import CompleteEvent, ErrorEvent
from .core.sse import iter_sse_events

logger = get_logger("client")

STREAM_PATH = "/api/upload-bundle-stream"
UPLOAD_PATH = "/api/upload-bundle"


@dataclass
class BundleJob:
    """One bundle to ingest into one target resource."""

    filename: str
    data: bytes
    target_id: str


OverallProgress = Callable[[float, int, Any], None]


def _raise_for_response(status_code: int, body: bytes) -> None:
    try:
        message = httpx.Response(status_code, content=body).json().get("error")
    except ValueError:
        message = None
    message = message or body.decode("utf-8", "replace") or f"HTTP {status_code}"
    if status_code == 401:
        raise AuthError(message)
    if status_code == 400:
        raise ValidationError(message)
    raise BundlePipelineError(message)


class IngestionClient:
    """
    Client for a running bundle pipeline API.

    Example:
        async with IngestionClient("http://localhost:8000", token) as client:
            async for event in client.stream_bundle("a.zip", data, owner, product):
                print(event.percentage)
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "IngestionClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _form(owner_id: str, target_id: str) -> Dict[str, str]:
        return {"ownerId": owner_id, "targetResourceId": target_id}

    async def upload_bundle(
        self, filename: str, data: bytes, owner_id: str, target_id: str
    ) -> Dict[str, Any]:
        """Synchronous ingestion; returns the response body."""
        response = await self._client.post(
            UPLOAD_PATH,
            data=self._form(owner_id, target_id),
            files={"file": (filename, data, "application/zip")},
        )
        if response.status_code != 200:
            _raise_for_response(response.status_code, response.content)
        return response.json()

    async def stream_bundle(
        self, filename: str, data: bytes, owner_id: str, target_id: str
    ) -> AsyncIterator[Any]:
        """
        Ingest a bundle and yield its progress events as they arrive.

        Raises:
            AuthError, ValidationError, BundlePipelineError: If the request
                is rejected before the stream opens.
        """
        async with self._client.stream(
            "POST",
            STREAM_PATH,
            data=self._form(owner_id, target_id),
            files={"file": (filename, data, "application/zip")},
        ) as response:
            if response.status_code != 200:
                _raise_for_response(response.status_code, await response.aread())
            async for event in iter_sse_events(response.aiter_bytes()):
                yield event

    async def ingest_many(
        self,
        jobs: Sequence[BundleJob],
        owner_id: str,
        on_progress: Optional[OverallProgress] = None,
    ) -> List[Any]:
        """
        Ingest several bundles one after the other.

        Each file gets an equal share of the overall percentage. A file that
        fails does not stop the others; its terminal event is an ``ErrorEvent``.
        """
        outcomes: List[Any] = []
        count = len(jobs)
        for index, job in enumerate(jobs):
            terminal: Any = None
            try:
                async for event in self.stream_bundle(
                    job.filename, job.data, owner_id, job.target_id
                ):
                    if on_progress is not None:
                        overall = (index * 100.0 + (event.percentage or 0.0)) / count
                        on_progress(round(overall, 2), index, event)
                    if isinstance(event, (CompleteEvent, ErrorEvent)):
                        terminal = event
            except BundlePipelineError as e:
                logger.error(f"Request for {job.filename} rejected: {e}")
                terminal = ErrorEvent(message=str(e))
            if terminal is None:
                terminal = ErrorEvent(message="Stream ended without a result")
            outcomes.append(terminal)
        return outcomes
