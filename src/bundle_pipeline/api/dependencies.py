"""Request dependencies: wired services and bearer-token auth."""

import hmac
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Header, Request

from ..core.exceptions import AuthError
from ..core.factories import ProcessingPipelineFactory
from ..core.models import PipelineSettings
from ..core.orchestrator import ResourceOrchestrator
from ..core.pipeline import IngestionPipeline
from ..core.protocols import AssetStorage, LoggerProtocol
from ..core.resources import ProductService, ProjectService


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""

    settings: PipelineSettings
    storage: AssetStorage
    store: Any
    pipeline: IngestionPipeline
    products: ProductService
    projects: ProjectService
    logger: Optional[LoggerProtocol] = None

    @classmethod
    def build(
        cls,
        settings: PipelineSettings,
        storage: AssetStorage,
        store: Any,
        logger: Optional[LoggerProtocol] = None,
    ) -> "Services":
        pipeline = ProcessingPipelineFactory.create_pipeline(
            storage, store, settings=settings, logger=logger
        )
        products = ProcessingPipelineFactory.create_product_service(store, storage, logger)
        return cls(
            settings=settings,
            storage=storage,
            store=store,
            pipeline=pipeline,
            products=products,
            projects=ProcessingPipelineFactory.create_project_service(
                store, store, products, logger
            ),
            logger=logger,
        )

    def new_orchestrator(self) -> ResourceOrchestrator:
        # Orchestrators keep per-run state, so every request gets its own.
        return ProcessingPipelineFactory.create_orchestrator(
            self.storage,
            self.store,
            self.store,
            self.store,
            settings=self.settings,
            logger=self.logger,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_auth(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> str:
    """Return the caller's bearer token, or raise ``AuthError``."""
    settings: PipelineSettings = request.app.state.services.settings
    if not authorization:
        raise AuthError("Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Unauthorized")
    token = token.strip()
    if not any(hmac.compare_digest(token, allowed) for allowed in settings.api_tokens):
        raise AuthError("Unauthorized")
    return token
