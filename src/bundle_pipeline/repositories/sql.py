"""SQLAlchemy-backed store for projects, products and views."""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Engine,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    select,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from ..core.exceptions import PersistenceError, translate_errors
from ..core.logging_config import get_logger
from ..core.models import ProductRecord, ProductUpdate, ProjectRecord, ViewRecord, utcnow

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


view_products = Table(
    "view_products",
    Base.metadata,
    Column("view_id", ForeignKey("views.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class ProjectRow(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    final_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    num_products: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<ProjectRow(id={self.id}, name='{self.name}')>"


class ProductRow(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), default="")
    idx: Mapped[str] = mapped_column(String(16), default="")
    configuration: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cover_asset_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    aggregate_size_mb: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<ProductRow(id={self.id}, owner_id={self.owner_id})>"


class ViewRow(Base):
    __tablename__ = "views"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    idx: Mapped[str] = mapped_column(String(16), default="")

    products: Mapped[List[ProductRow]] = relationship(secondary=view_products)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def create_store_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``; SQLite gets foreign keys switched on."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url, connect_args={"check_same_thread": False}, echo=False
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url, echo=False)


def _project_record(row: ProjectRow) -> ProjectRecord:
    return ProjectRecord(
        project_id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        final_message=row.final_message,
        num_products=row.num_products,
        created_at=row.created_at,
    )


def _product_record(row: ProductRow) -> ProductRecord:
    return ProductRecord(
        product_id=row.id,
        owner_id=row.owner_id,
        project_id=row.project_id,
        name=row.name,
        idx=row.idx,
        configuration=dict(row.configuration or {}),
        storage_path=row.storage_path,
        cover_asset_url=row.cover_asset_url,
        aggregate_size_mb=row.aggregate_size_mb,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _view_record(row: ViewRow) -> ViewRecord:
    return ViewRecord(
        view_id=row.id,
        project_id=row.project_id,
        idx=row.idx,
        product_ids=[product.id for product in row.products],
    )


class SqlAlchemyStore:
    """
    Product, project and view repositories over one SQLAlchemy engine.

    The ORM session is synchronous; every public method runs its unit of work
    in a worker thread so the event loop is never blocked. Deleting a row that
    does not exist is a no-op.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessions = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
        )
        self._logger = get_logger("repositories.sql")

    @classmethod
    def from_url(cls, database_url: str, create_schema: bool = True) -> "SqlAlchemyStore":
        store = cls(create_store_engine(database_url))
        if create_schema:
            store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    async def _run(self, action: str, work: Callable[[Session], T]) -> T:
        self._logger.debug(action)

        def unit_of_work() -> T:
            with translate_errors(PersistenceError, prefix=f"{action}: "):
                with self._sessions.begin() as session:
                    return work(session)

        return await asyncio.to_thread(unit_of_work)

    # Products

    async def create_product(self, product: ProductRecord) -> ProductRecord:
        def work(session: Session) -> ProductRecord:
            row = ProductRow(
                id=product.product_id,
                owner_id=product.owner_id,
                project_id=product.project_id,
                name=product.name,
                idx=product.idx,
                configuration=product.configuration,
                storage_path=product.storage_path,
                cover_asset_url=product.cover_asset_url,
                aggregate_size_mb=product.aggregate_size_mb,
                created_at=product.created_at,
                updated_at=product.updated_at,
            )
            session.add(row)
            session.flush()
            return _product_record(row)

        return await self._run("create product", work)

    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        def work(session: Session) -> Optional[ProductRecord]:
            row = session.get(ProductRow, product_id)
            return _product_record(row) if row else None

        return await self._run("get product", work)

    async def list_products(self, project_id: str) -> List[ProductRecord]:
        def work(session: Session) -> List[ProductRecord]:
            rows = session.scalars(
                select(ProductRow)
                .where(ProductRow.project_id == project_id)
                .order_by(ProductRow.created_at, ProductRow.id)
            ).all()
            return [_product_record(row) for row in rows]

        return await self._run("list products", work)

    async def update_product(self, product_id: str, update: ProductUpdate) -> ProductRecord:
        def work(session: Session) -> ProductRecord:
            row = session.get(ProductRow, product_id)
            if row is None:
                raise PersistenceError(f"Product {product_id} not found")
            row.configuration = update.configuration
            row.storage_path = update.storage_path
            row.cover_asset_url = update.cover_asset_url
            row.aggregate_size_mb = update.aggregate_size_mb
            row.updated_at = update.updated_at
            session.flush()
            return _product_record(row)

        return await self._run("update product", work)

    async def delete_product(self, product_id: str) -> None:
        def work(session: Session) -> None:
            session.execute(delete(ProductRow).where(ProductRow.id == product_id))

        await self._run("delete product", work)

    # Projects

    async def create_project(self, project: ProjectRecord) -> ProjectRecord:
        def work(session: Session) -> ProjectRecord:
            row = ProjectRow(
                id=project.project_id,
                owner_id=project.owner_id,
                name=project.name,
                final_message=project.final_message,
                num_products=project.num_products,
                created_at=project.created_at,
            )
            session.add(row)
            session.flush()
            return _project_record(row)

        return await self._run("create project", work)

    async def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        def work(session: Session) -> Optional[ProjectRecord]:
            row = session.get(ProjectRow, project_id)
            return _project_record(row) if row else None

        return await self._run("get project", work)

    async def delete_project(self, project_id: str) -> None:
        def work(session: Session) -> None:
            session.execute(delete(ProjectRow).where(ProjectRow.id == project_id))

        await self._run("delete project", work)

    # Views

    async def create_view(self, view: ViewRecord) -> ViewRecord:
        def work(session: Session) -> ViewRecord:
            row = ViewRow(id=view.view_id, project_id=view.project_id, idx=view.idx)
            session.add(row)
            session.flush()
            return _view_record(row)

        return await self._run("create view", work)

    async def get_view(self, view_id: str) -> Optional[ViewRecord]:
        def work(session: Session) -> Optional[ViewRecord]:
            row = session.get(ViewRow, view_id)
            return _view_record(row) if row else None

        return await self._run("get view", work)

    async def assign_products(self, view_id: str, product_ids: Sequence[str]) -> ViewRecord:
        def work(session: Session) -> ViewRecord:
            row = session.get(ViewRow, view_id)
            if row is None:
                raise PersistenceError(f"View {view_id} not found")
            products = session.scalars(
                select(ProductRow).where(ProductRow.id.in_(list(product_ids)))
            ).all()
            missing = set(product_ids) - {product.id for product in products}
            if missing:
                raise PersistenceError(f"Unknown products: {', '.join(sorted(missing))}")
            order = {product_id: i for i, product_id in enumerate(product_ids)}
            row.products = sorted(products, key=lambda product: order[product.id])
            session.flush()
            return _view_record(row)

        return await self._run("assign products", work)

    async def delete_view(self, view_id: str) -> None:
        def work(session: Session) -> None:
            session.execute(delete(ViewRow).where(ViewRow.id == view_id))

        await self._run("delete view", work)
