"""Multi-resource creation with best-effort compensating rollback."""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional

from .exceptions import OrchestrationError, ValidationError
from .models import (
    ProductRecord,
    ProjectCreationRequest,
    ProjectCreationResult,
    ProjectRecord,
    ViewRecord,
)
from .observability import LogContext, StructuredLogger
from .pipeline import IngestionPipeline
from .protocols import LoggerProtocol, ViewRepository
from .resources import ProductService, ProjectService


class OrchestrationState(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    CHILDREN_CREATED = "children_created"
    ASSETS_INGESTED = "assets_ingested"
    GROUPS_CREATED = "groups_created"
    ASSIGNMENTS_APPLIED = "assignments_applied"
    DONE = "done"
    ROLLED_BACK = "rolled_back"


class ResourceKind(str, Enum):
    PROJECT = "project"
    PRODUCT = "product"
    VIEW = "view"


@dataclass(frozen=True)
class CreatedResource:
    kind: ResourceKind
    resource_id: str
    owner_id: Optional[str] = None


class CompensatingLog:
    """Ordered record of everything created during one run."""

    def __init__(self):
        self._entries: List[CreatedResource] = []

    def record(
        self, kind: ResourceKind, resource_id: str, owner_id: Optional[str] = None
    ) -> None:
        self._entries.append(CreatedResource(kind, resource_id, owner_id))

    def __iter__(self) -> Iterator[CreatedResource]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def newest_first(self) -> List[CreatedResource]:
        return list(reversed(self._entries))

    def clear(self) -> None:
        self._entries.clear()


class _StepFailed(Exception):
    def __init__(self, state: OrchestrationState, cause: BaseException):
        super().__init__(str(cause))
        self.state = state
        self.cause = cause


class ResourceOrchestrator:
    """
    Creates a project, its products and views, ingesting one bundle per product.

    States advance Created -> ChildrenCreated -> AssetsIngested ->
    GroupsCreated -> AssignmentsApplied -> Done. Any structural failure moves
    the run to RolledBack: every resource in the compensating log gets one
    delete call (failures there are logged, not raised) and the caller gets a
    single ``OrchestrationError``.
    """

    def __init__(
        self,
        projects: ProjectService,
        products: ProductService,
        views: ViewRepository,
        pipeline: Optional[IngestionPipeline] = None,
        logger: Optional[LoggerProtocol] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._projects = projects
        self._products = products
        self._views = views
        self._pipeline = pipeline
        self._logger = logger or StructuredLogger("orchestrator")
        self._new_id = id_factory
        self.state = OrchestrationState.PENDING
        self.log = CompensatingLog()

    async def create(self, request: ProjectCreationRequest) -> ProjectCreationResult:
        """
        Run the whole creation sequence.

        Raises:
            ValidationError: If more bundles than products are requested.
                Nothing has been created at that point.
            OrchestrationError: If any step failed; everything created so far
                has been offered one compensating delete.
        """
        if len(request.bundles) > request.product_count:
            raise ValidationError(
                f"{len(request.bundles)} bundles given for "
                f"{request.product_count} products"
            )

        self.state = OrchestrationState.PENDING
        self.log = CompensatingLog()
        context = LogContext(operation="create_project", component="orchestrator")
        try:
            result = await self._create(request, context)
        except _StepFailed as failure:
            raise await self._abort(failure.state, failure.cause, context) from failure.cause
        except Exception as e:  # noqa: BLE001
            raise await self._abort(self.state, e, context) from e

        self.state = OrchestrationState.DONE
        self.log.clear()
        self._logger.info("Project created", context.with_metadata(project=result.project.project_id))
        return result

    async def _abort(
        self, state: OrchestrationState, cause: BaseException, context: LogContext
    ) -> OrchestrationError:
        self._logger.error(
            "Project creation failed", context, step=state.value, error=repr(cause)
        )
        failures = await self.rollback(context)
        self.state = OrchestrationState.ROLLED_BACK
        return OrchestrationError(
            f"Error creating project: {cause}. Changes made so far were reverted.",
            step=state.value,
            rollback_attempted=True,
            rollback_failures=failures,
        )

    async def _step(self, state: OrchestrationState, awaitable):
        try:
            return await awaitable
        except Exception as e:  # noqa: BLE001
            raise _StepFailed(state, e) from e

    async def _create(
        self, request: ProjectCreationRequest, context: LogContext
    ) -> ProjectCreationResult:
        # Created(parent)
        project = await self._step(
            OrchestrationState.CREATED,
            self._projects.create_project(
                ProjectRecord(
                    project_id=self._new_id(),
                    owner_id=request.owner_id,
                    name=request.name,
                    final_message=request.final_message,
                    num_products=request.product_count,
                )
            ),
        )
        self.log.record(ResourceKind.PROJECT, project.project_id)
        self.state = OrchestrationState.CREATED
        context.resource_id = project.project_id

        # ChildrenCreated
        products: List[ProductRecord] = []
        for index in range(request.product_count):
            name = (
                request.product_names[index]
                if index < len(request.product_names)
                else f"Product {index + 1}"
            )
            product = await self._step(
                OrchestrationState.CHILDREN_CREATED,
                self._products.create_product(
                    ProductRecord(
                        product_id=self._new_id(),
                        owner_id=request.owner_id,
                        project_id=project.project_id,
                        name=name,
                        idx=str(index),
                    )
                ),
            )
            self.log.record(ResourceKind.PRODUCT, product.product_id, product.owner_id)
            products.append(product)
        self.state = OrchestrationState.CHILDREN_CREATED

        # AssetsIngested
        warnings: List[str] = []
        if request.bundles and self._pipeline is None:
            raise _StepFailed(
                OrchestrationState.ASSETS_INGESTED,
                RuntimeError("No ingestion pipeline configured"),
            )
        for product, bundle in zip(products, request.bundles):
            warnings.extend(await self._ingest(product, bundle.data, bundle.filename, context))
        self.state = OrchestrationState.ASSETS_INGESTED

        # GroupsCreated
        views: List[ViewRecord] = []
        for index, _ in enumerate(request.views):
            view = await self._step(
                OrchestrationState.GROUPS_CREATED,
                self._views.create_view(
                    ViewRecord(
                        view_id=self._new_id(),
                        project_id=project.project_id,
                        idx=str(index),
                    )
                ),
            )
            self.log.record(ResourceKind.VIEW, view.view_id)
            views.append(view)
        self.state = OrchestrationState.GROUPS_CREATED

        # AssignmentsApplied
        for index, (view, selection) in enumerate(zip(views, request.views)):
            selected = [
                products[i].product_id
                for i, chosen in enumerate(selection)
                if chosen and i < len(products)
            ]
            if not selected:
                self._logger.info(f"View {index + 1} has no products selected", context)
                continue
            views[index] = await self._step(
                OrchestrationState.ASSIGNMENTS_APPLIED,
                self._views.assign_products(view.view_id, selected),
            )
        self.state = OrchestrationState.ASSIGNMENTS_APPLIED

        refreshed = []
        for product in products:
            current = await self._step(
                OrchestrationState.ASSIGNMENTS_APPLIED,
                self._products.get_product(product.product_id),
            )
            refreshed.append(current or product)

        return ProjectCreationResult(
            project=project,
            products=refreshed,
            views=views,
            ingestion_warnings=warnings,
        )

    async def _ingest(
        self, product: ProductRecord, data: bytes, filename: str, context: LogContext
    ) -> List[str]:
        item_context = context.with_metadata(product=product.product_id, file=filename)
        try:
            result = await self._pipeline.run(data, product.owner_id, product.product_id)
        except Exception as e:  # noqa: BLE001
            raise _StepFailed(OrchestrationState.ASSETS_INGESTED, e) from e

        if result.asset_count and not result.uploaded_asset_paths:
            raise _StepFailed(
                OrchestrationState.ASSETS_INGESTED,
                RuntimeError(f"No image of {filename} could be uploaded"),
            )
        if result.errors:
            self._logger.warning(
                "Some assets failed to upload", item_context, failed=len(result.errors)
            )
        return [f"{filename}: {error}" for error in result.errors]

    async def rollback(self, context: Optional[LogContext] = None) -> List[str]:
        """
        Issue one delete per logged resource, newest first.

        Each delete is independent; a failing delete is logged and the
        rollback carries on. Returns the failure messages.
        """
        context = (context or LogContext(component="orchestrator")).with_operation("rollback")
        failures: List[str] = []
        self._logger.warning("Rolling back created resources", context, count=len(self.log))

        for resource in self.log.newest_first():
            try:
                if resource.kind is ResourceKind.PRODUCT:
                    await self._products.delete_product(
                        resource.resource_id, owner_id=resource.owner_id
                    )
                elif resource.kind is ResourceKind.VIEW:
                    await self._projects.delete_view(resource.resource_id)
                else:
                    await self._projects.discard_project(resource.resource_id)
            except Exception as e:  # noqa: BLE001
                message = f"{resource.kind.value} {resource.resource_id}: {e}"
                failures.append(message)
                self._logger.error("Rollback delete failed", context, error=message)
            else:
                self._logger.info(
                    f"Rolled back {resource.kind.value}",
                    context.with_metadata(resource=resource.resource_id),
                )

        self.log.clear()
        return failures
