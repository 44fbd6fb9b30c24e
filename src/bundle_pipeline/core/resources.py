"""Services over the relational store and object storage for the pipeline's resources."""

from typing import List, Optional

from .asset_utils import calculate_storage_prefix
from .exceptions import PersistenceError, StorageError, ValidationError
from .models import ProductRecord, ProductUpdate, ProjectRecord
from .observability import LogContext, StructuredLogger
from .protocols import (
    AssetStorage,
    LoggerProtocol,
    ProductRepository,
    ProjectRepository,
    ViewRepository,
)


class ProductService:
    """Finalize and delete target resources together with their stored assets."""

    def __init__(
        self,
        repository: ProductRepository,
        storage: AssetStorage,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._repository = repository
        self._storage = storage
        self._logger = logger or StructuredLogger("products")

    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        return await self._repository.get_product(product_id)

    async def create_product(self, product: ProductRecord) -> ProductRecord:
        return await self._repository.create_product(product)

    async def finalize(self, product_id: str, update: ProductUpdate) -> ProductRecord:
        """
        Write configuration, storage path, cover asset and size in one update.

        Raises:
            PersistenceError: If the update fails.
        """
        context = LogContext(
            operation="finalize_product", component="products", resource_id=product_id
        )
        try:
            product = await self._repository.update_product(product_id, update)
        except Exception as e:  # noqa: BLE001
            self._logger.error("Product update failed", context, error=str(e))
            raise PersistenceError(f"Error updating product: {e}") from e

        self._logger.info(
            "Product finalized",
            context,
            size_mb=round(update.aggregate_size_mb, 2),
            cover=update.cover_asset_url or "none",
        )
        return product

    async def list_project_products(self, project_id: str) -> List[ProductRecord]:
        return await self._repository.list_products(project_id)

    async def delete_assets(self, owner_id: str, product_id: str) -> List[str]:
        """Explicitly delete every object stored under the product's prefix."""
        prefix = calculate_storage_prefix(owner_id, product_id) + "/"
        keys = await self._storage.list_keys(prefix)
        if keys:
            await self._storage.delete(keys)
        return keys

    async def delete_product(self, product_id: str, owner_id: Optional[str] = None) -> bool:
        """
        Delete a product and its stored assets.

        Relational cascades do not reach object storage, so the assets are
        removed first. Without ``owner_id`` the product is looked up to find
        its storage prefix, and deleting an unknown product is a no-op
        returning False. With ``owner_id`` the lookup is skipped.

        Raises:
            PersistenceError: If the row could not be deleted.
        """
        context = LogContext(
            operation="delete_product", component="products", resource_id=product_id
        )
        if owner_id is None:
            product = await self._repository.get_product(product_id)
            if product is None:
                self._logger.info("Product already absent", context)
                return False
            owner_id = product.owner_id

        try:
            removed = await self.delete_assets(owner_id, product_id)
            self._logger.info("Deleted product assets", context, assets=len(removed))
        except StorageError as e:
            self._logger.warning("Error deleting product assets", context, error=str(e))

        try:
            await self._repository.delete_product(product_id)
        except Exception as e:  # noqa: BLE001
            raise PersistenceError(f"Error deleting product {product_id}: {e}") from e
        return True


class ProjectService:
    """Create and delete parent resources and their groups."""

    def __init__(
        self,
        projects: ProjectRepository,
        views: ViewRepository,
        logger: Optional[LoggerProtocol] = None,
        product_service: Optional[ProductService] = None,
    ):
        self._projects = projects
        self._views = views
        self._logger = logger or StructuredLogger("projects")
        self._product_service = product_service

    async def create_project(self, project: ProjectRecord) -> ProjectRecord:
        if not project.name.strip():
            raise ValidationError("Project name is required")
        return await self._projects.create_project(project)

    async def delete_project(self, project_id: str) -> bool:
        """
        Delete a project together with its products and their stored assets.

        Views go with the project row. Products are deleted one by one first
        because their assets live outside the relational store. Returns False
        when the project does not exist.

        Raises:
            PersistenceError: If a product or the project row could not be deleted.
        """
        context = LogContext(
            operation="delete_project", component="projects", resource_id=project_id
        )
        if await self._projects.get_project(project_id) is None:
            self._logger.info("Project already absent", context)
            return False

        products: List[ProductRecord] = []
        if self._product_service is not None:
            products = await self._product_service.list_project_products(project_id)
            for product in products:
                await self._product_service.delete_product(
                    product.product_id, owner_id=product.owner_id
                )

        await self.discard_project(project_id)
        self._logger.info("Project deleted", context, products=len(products))
        return True

    async def discard_project(self, project_id: str) -> None:
        """Delete only the project row. Missing rows are ignored."""
        try:
            await self._projects.delete_project(project_id)
        except Exception as e:  # noqa: BLE001
            raise PersistenceError(f"Error deleting project {project_id}: {e}") from e

    async def delete_view(self, view_id: str) -> None:
        await self._views.delete_view(view_id)
