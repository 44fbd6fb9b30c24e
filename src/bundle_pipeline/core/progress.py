"""Progress events, the phase state machine and the in-process event channel."""

import asyncio
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .logging_config import get_logger

logger = get_logger("progress")


class ProgressPhase(str, Enum):
    """Phases of one ingestion run."""

    IDLE = "idle"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    UPLOADING_IMAGES = "uploading-images"
    IMAGES_UPLOADED = "images-uploaded"
    UPDATING_PRODUCT = "updating-product"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_PHASES: FrozenSet[ProgressPhase] = frozenset(
    {ProgressPhase.COMPLETE, ProgressPhase.ERROR}
)

TRANSITIONS: Dict[ProgressPhase, FrozenSet[ProgressPhase]] = {
    ProgressPhase.IDLE: frozenset({ProgressPhase.EXTRACTING, ProgressPhase.ERROR}),
    ProgressPhase.EXTRACTING: frozenset({ProgressPhase.EXTRACTED, ProgressPhase.ERROR}),
    ProgressPhase.EXTRACTED: frozenset(
        {ProgressPhase.UPLOADING_IMAGES, ProgressPhase.ERROR}
    ),
    ProgressPhase.UPLOADING_IMAGES: frozenset(
        {
            ProgressPhase.UPLOADING_IMAGES,
            ProgressPhase.IMAGES_UPLOADED,
            ProgressPhase.ERROR,
        }
    ),
    ProgressPhase.IMAGES_UPLOADED: frozenset(
        {ProgressPhase.UPDATING_PRODUCT, ProgressPhase.ERROR}
    ),
    ProgressPhase.UPDATING_PRODUCT: frozenset(
        {ProgressPhase.COMPLETE, ProgressPhase.ERROR}
    ),
    ProgressPhase.COMPLETE: frozenset(),
    ProgressPhase.ERROR: frozenset(),
}

# Percentage allocated to each phase; uploads are spread between
# UPLOAD_START and UPLOAD_END in proportion to uploaded/total.
PHASE_PERCENTAGE: Dict[ProgressPhase, float] = {
    ProgressPhase.IDLE: 0.0,
    ProgressPhase.EXTRACTING: 5.0,
    ProgressPhase.EXTRACTED: 30.0,
    ProgressPhase.UPLOADING_IMAGES: 30.0,
    ProgressPhase.IMAGES_UPLOADED: 95.0,
    ProgressPhase.UPDATING_PRODUCT: 97.0,
    ProgressPhase.COMPLETE: 100.0,
}
UPLOAD_START = 30.0
UPLOAD_END = 95.0


class InvalidTransition(RuntimeError):
    """A phase change that the transition table does not allow."""


class _EventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ProgressUpdate(_EventModel):
    type: Literal["progress"] = "progress"
    phase: ProgressPhase
    message: str
    uploaded: Optional[int] = None
    total: Optional[int] = None
    percentage: Optional[float] = None
    file_name: Optional[str] = Field(default=None, alias="fileName")


class CompleteEvent(_EventModel):
    type: Literal["complete"] = "complete"
    message: str
    constants: Dict[str, Any] = Field(default_factory=dict)
    uploaded_images: List[str] = Field(default_factory=list, alias="uploadedImages")
    image_count: int = Field(default=0, alias="imageCount")
    storage_path: str = Field(default="", alias="storagePath")
    cover_image: Optional[str] = Field(default=None, alias="coverImage")
    total_size_mb: float = Field(default=0.0, alias="totalSizeMB")
    percentage: float = 100.0


class ErrorEvent(_EventModel):
    type: Literal["error"] = "error"
    message: str
    percentage: Optional[float] = None


ProgressEvent = Annotated[
    Union[ProgressUpdate, CompleteEvent, ErrorEvent], Field(discriminator="type")
]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(ProgressEvent)


def parse_event(payload: Union[str, bytes, Dict[str, Any]]):
    """Parse a JSON text or decoded mapping into a typed progress event."""
    if isinstance(payload, (str, bytes)):
        return _EVENT_ADAPTER.validate_json(payload)
    return _EVENT_ADAPTER.validate_python(payload)


_CLOSED = object()


class ProgressChannel:
    """
    Ordered, push-only event stream for one run.

    Publishing never blocks: events go into an unbounded queue that the
    consumer drains at its own pace. Once closed, or once the consumer has
    detached, publishing is a no-op.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False
        self._detached = False
        self.history: List[Any] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    def publish(self, event) -> bool:
        """Queue an event. Returns False when the event was dropped."""
        if self._closed:
            logger.debug(f"Dropping {event.type} event on closed channel")
            return False
        self.history.append(event)
        if not self._detached:
            self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def detach(self) -> None:
        """The consumer went away; stop buffering for it."""
        if not self._detached:
            logger.info("Progress consumer disconnected; run continues in background")
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class ProgressTracker:
    """
    Explicit phase state machine with a single emission point.

    Every phase change goes through ``_emit``, which checks the transition
    table, keeps the percentage non-decreasing, publishes the event and
    closes the channel after a terminal event.
    """

    def __init__(self, channel: Optional[ProgressChannel] = None):
        self.channel = channel or ProgressChannel()
        self.phase = ProgressPhase.IDLE
        self.percentage = 0.0

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def _emit(self, phase: ProgressPhase, event, percentage: Optional[float]) -> None:
        if phase not in TRANSITIONS[self.phase]:
            raise InvalidTransition(f"Cannot move from {self.phase.value} to {phase.value}")
        if percentage is not None:
            self.percentage = max(self.percentage, round(percentage, 2))
        self.phase = phase
        self.channel.publish(event)
        if phase in TERMINAL_PHASES:
            self.channel.close()

    def advance(
        self,
        phase: ProgressPhase,
        message: str,
        uploaded: Optional[int] = None,
        total: Optional[int] = None,
        file_name: Optional[str] = None,
    ) -> None:
        if phase is ProgressPhase.UPLOADING_IMAGES and total:
            target = UPLOAD_START + (UPLOAD_END - UPLOAD_START) * (uploaded or 0) / total
        else:
            target = PHASE_PERCENTAGE[phase]
        target = max(self.percentage, round(target, 2))
        event = ProgressUpdate(
            phase=phase,
            message=message,
            uploaded=uploaded,
            total=total,
            percentage=target,
            file_name=file_name,
        )
        self._emit(phase, event, target)

    def complete(self, **fields: Any) -> None:
        event = CompleteEvent(**fields)
        self._emit(ProgressPhase.COMPLETE, event, 100.0)

    def fail(self, message: str) -> None:
        """Emit the terminal error event. Ignored once the run has finished."""
        if self.finished:
            logger.warning(f"Ignoring error after terminal event: {message}")
            return
        self._emit(
            ProgressPhase.ERROR,
            ErrorEvent(message=message, percentage=self.percentage),
            None,
        )
