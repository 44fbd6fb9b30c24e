"""HTTP routes for bundle ingestion, deletion and project creation."""

import asyncio
import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import StreamingResponse

from ..core.archive import validate_archive
from ..core.exceptions import ValidationError
from ..core.logging_config import get_logger
from ..core.models import BundleUpload, ProjectCreationRequest
from ..core.sse import encode_event
from .dependencies import Services, get_services, require_auth

logger = get_logger("api")

router = APIRouter()

ARCHIVE_SUFFIX = ".zip"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value is not None and value.strip():
            return value.strip()
    return None


async def _read_bundle(file: Optional[UploadFile]) -> BundleUpload:
    if file is None or not file.filename:
        raise ValidationError("No file provided")
    if not file.filename.lower().endswith(ARCHIVE_SUFFIX):
        raise ValidationError("Only ZIP files are allowed")
    return BundleUpload(filename=file.filename, data=await file.read())


def _ingestion_target(
    target_resource_id: Optional[str],
    owner_id: Optional[str],
    product_id: Optional[str],
    admin_id: Optional[str],
):
    target = _first(target_resource_id, product_id)
    owner = _first(owner_id, admin_id)
    if not target or not owner:
        raise ValidationError("targetResourceId and ownerId are required")
    return owner, target


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.post("/api/upload-bundle")
async def upload_bundle(
    file: Optional[UploadFile] = File(default=None),
    targetResourceId: Optional[str] = Form(default=None),
    ownerId: Optional[str] = Form(default=None),
    product_id: Optional[str] = Form(default=None),
    admin_id: Optional[str] = Form(default=None),
    _token: str = Depends(require_auth),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Ingest a bundle and answer once the product has been finalized."""
    owner, target = _ingestion_target(targetResourceId, ownerId, product_id, admin_id)
    bundle = await _read_bundle(file)
    logger.info(f"Ingesting {bundle.filename} into {owner}/{target}")

    result = await services.pipeline.run(bundle.data, owner, target)
    return result.to_response()


@router.post("/api/upload-bundle-stream")
async def upload_bundle_stream(
    file: Optional[UploadFile] = File(default=None),
    targetResourceId: Optional[str] = Form(default=None),
    ownerId: Optional[str] = Form(default=None),
    product_id: Optional[str] = Form(default=None),
    admin_id: Optional[str] = Form(default=None),
    _token: str = Depends(require_auth),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """
    Ingest a bundle while streaming progress as server-sent events.

    Request problems are answered with a JSON error before the stream opens.
    Once it is open, every failure arrives as the terminal ``error`` event.
    """
    owner, target = _ingestion_target(targetResourceId, ownerId, product_id, admin_id)
    bundle = await _read_bundle(file)
    await asyncio.to_thread(validate_archive, bundle.data)

    channel, _task = services.pipeline.start_stream(bundle.data, owner, target)
    logger.info(f"Streaming ingestion of {bundle.filename} into {owner}/{target}")

    async def event_stream():
        try:
            async for event in channel:
                yield encode_event(event)
        finally:
            if not channel.closed:
                channel.detach()

    return StreamingResponse(
        event_stream(), media_type="text/event-stream", headers=SSE_HEADERS
    )


@router.delete("/api/products/{product_id}")
async def delete_product(
    product_id: str,
    _token: str = Depends(require_auth),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    deleted = await services.products.delete_product(product_id)
    return {"ok": True, "deleted": deleted}


@router.delete("/api/projects/{project_id}")
async def delete_project(
    project_id: str,
    _token: str = Depends(require_auth),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Delete a project, its products with their stored assets, and its views."""
    deleted = await services.projects.delete_project(project_id)
    return {"ok": True, "deleted": deleted}


def _parse_views(raw: Optional[str]) -> List[List[bool]]:
    if not raw:
        return []
    try:
        views = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid views: {e}") from e
    if not isinstance(views, list) or not all(isinstance(v, list) for v in views):
        raise ValidationError("views must be a list of selection lists")
    return [[bool(selected) for selected in view] for view in views]


@router.post("/api/projects")
async def create_project(
    name: Optional[str] = Form(default=None),
    ownerId: Optional[str] = Form(default=None),
    finalMessage: Optional[str] = Form(default=None),
    views: Optional[str] = Form(default=None),
    files: Optional[List[UploadFile]] = File(default=None),
    _token: str = Depends(require_auth),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Create a project with one product per uploaded bundle, plus its views."""
    if not _first(name) or not _first(ownerId):
        raise ValidationError("name and ownerId are required")
    bundles = [await _read_bundle(file) for file in files or []]
    request = ProjectCreationRequest(
        owner_id=ownerId.strip(),
        name=name.strip(),
        final_message=finalMessage,
        bundles=bundles,
        views=_parse_views(views),
    )

    result = await services.new_orchestrator().create(request)
    return {
        "ok": True,
        "project": result.project.model_dump(mode="json"),
        "products": [p.model_dump(mode="json") for p in result.products],
        "views": [v.model_dump(mode="json") for v in result.views],
        "warnings": result.ingestion_warnings,
    }
