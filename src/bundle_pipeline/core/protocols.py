"""Protocol definitions for dependency injection and testability."""

from typing import Any, List, Optional, Protocol, Sequence

from .models import ProductRecord, ProductUpdate, ProjectRecord, ViewRecord


class AssetStorage(Protocol):
    """Protocol for object storage operations."""

    async def upload(self, key: str, body: bytes, content_type: str) -> str:
        """Store ``body`` at ``key`` (overwriting) and return the stored key."""
        ...

    async def delete(self, keys: Sequence[str]) -> None:
        """Delete the given keys. Missing keys are ignored."""
        ...

    async def list_keys(self, prefix: str) -> List[str]:
        """List every key under ``prefix``."""
        ...

    def public_url(self, key: str) -> str:
        """Publicly reachable URL of ``key``."""
        ...


class ProductRepository(Protocol):
    """Protocol for product persistence."""

    async def create_product(self, product: ProductRecord) -> ProductRecord: ...

    async def get_product(self, product_id: str) -> Optional[ProductRecord]: ...

    async def list_products(self, project_id: str) -> List[ProductRecord]: ...

    async def update_product(
        self, product_id: str, update: ProductUpdate
    ) -> ProductRecord: ...

    async def delete_product(self, product_id: str) -> None: ...


class ProjectRepository(Protocol):
    """Protocol for project persistence."""

    async def create_project(self, project: ProjectRecord) -> ProjectRecord: ...

    async def get_project(self, project_id: str) -> Optional[ProjectRecord]: ...

    async def delete_project(self, project_id: str) -> None: ...


class ViewRepository(Protocol):
    """Protocol for view persistence and product assignment."""

    async def create_view(self, view: ViewRecord) -> ViewRecord: ...

    async def assign_products(
        self, view_id: str, product_ids: Sequence[str]
    ) -> ViewRecord: ...

    async def delete_view(self, view_id: str) -> None: ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None: ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None: ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None: ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None: ...
