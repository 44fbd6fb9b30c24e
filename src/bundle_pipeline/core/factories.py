"""Factory classes for creating configured service instances."""

import logging
from typing import Any, Optional

from .models import PipelineSettings
from .observability import MetricsCollector, StructuredLogger
from .orchestrator import ResourceOrchestrator
from .pipeline import IngestionPipeline
from .protocols import (
    AssetStorage,
    LoggerProtocol,
    ProductRepository,
    ProjectRepository,
    ViewRepository,
)
from .resources import ProductService, ProjectService


class LoggerFactory:
    """Factory for creating logger instances."""

    @staticmethod
    def create_logger(name: str, level: int = logging.INFO) -> LoggerProtocol:
        return StructuredLogger(name, level)


class StorageFactory:
    """Factory for object storage backends."""

    @staticmethod
    def create_storage(settings: PipelineSettings, **kwargs: Any) -> AssetStorage:
        """Create the S3 backend. It still has to be entered as an async context."""
        from ..storage import S3AssetStorage

        return S3AssetStorage(
            bucket=settings.storage_bucket,
            endpoint_url=kwargs.get("endpoint_url", settings.storage_endpoint_url),
            region_name=kwargs.get("region_name", settings.storage_region),
            public_base_url=kwargs.get("public_base_url", settings.public_base_url),
        )


class RepositoryFactory:
    """Factory for the relational store."""

    @staticmethod
    def create_store(settings: PipelineSettings):
        from ..repositories import SqlAlchemyStore

        return SqlAlchemyStore.from_url(settings.database_url)


class ProcessingPipelineFactory:
    """Factory for wiring services, the ingestion pipeline and the orchestrator."""

    @staticmethod
    def create_product_service(
        products: ProductRepository,
        storage: AssetStorage,
        logger: Optional[LoggerProtocol] = None,
    ) -> ProductService:
        return ProductService(products, storage, logger)

    @staticmethod
    def create_project_service(
        projects: ProjectRepository,
        views: ViewRepository,
        product_service: ProductService,
        logger: Optional[LoggerProtocol] = None,
    ) -> ProjectService:
        return ProjectService(projects, views, logger, product_service=product_service)

    @staticmethod
    def create_pipeline(
        storage: AssetStorage,
        products: ProductRepository,
        settings: Optional[PipelineSettings] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        **kwargs: Any,
    ) -> IngestionPipeline:
        """Create a fully configured ingestion pipeline."""
        settings = settings or PipelineSettings()
        if logger is None:
            logger = LoggerFactory.create_logger("pipeline")
        if metrics_collector is None:
            metrics_collector = MetricsCollector()

        return IngestionPipeline(
            storage=storage,
            products=ProductService(products, storage, logger),
            settings=settings,
            logger=logger,
            metrics_collector=metrics_collector,
            **kwargs,
        )

    @staticmethod
    def create_orchestrator(
        storage: AssetStorage,
        products: ProductRepository,
        projects: ProjectRepository,
        views: ViewRepository,
        settings: Optional[PipelineSettings] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        **kwargs: Any,
    ) -> ResourceOrchestrator:
        """Create an orchestrator whose children are ingested by a fresh pipeline."""
        if logger is None:
            logger = LoggerFactory.create_logger("orchestrator")
        if metrics_collector is None:
            metrics_collector = MetricsCollector()

        product_service = ProductService(products, storage, logger)
        pipeline = IngestionPipeline(
            storage=storage,
            products=product_service,
            settings=settings,
            logger=logger,
            metrics_collector=metrics_collector,
            **kwargs,
        )
        return ResourceOrchestrator(
            projects=ProjectService(projects, views, logger, product_service=product_service),
            products=product_service,
            views=views,
            pipeline=pipeline,
            logger=logger,
        )
