"""Catalog store contract and its SQLAlchemy implementation.

Pipeline components receive a ``CatalogStore`` explicitly instead of opening
sessions themselves, so each component can run against PostgreSQL in
production and an in-memory store in tests. Every mutation is a single-row
write keyed by primary key.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_pipeline.db.models import (
    KnowledgeChunk,
    KnowledgeDocument,
    Manufacturer,
    PillarSchema,
    Product,
    ProductFile,
    ScrapeJob,
)
from catalog_pipeline.errors import PersistenceError

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class Scope:
    """Optional manufacturer / organization filter for batch components."""

    manufacturer_id: Optional[int] = None
    organization_id: Optional[int] = None

    def to_dict(self) -> dict[str, Optional[int]]:
        return {"manufacturer_id": self.manufacturer_id, "organization_id": self.organization_id}


class CatalogStore(ABC):
    """Persistence operations the ingestion pipeline depends on."""

    # Manufacturers ---------------------------------------------------------

    @abstractmethod
    async def get_manufacturer(self, manufacturer_id: int) -> Optional[Manufacturer]: ...

    @abstractmethod
    async def mark_manufacturer_scraped(self, manufacturer_id: int) -> None: ...

    # Scrape jobs -----------------------------------------------------------

    @abstractmethod
    async def create_job(self, manufacturer_id: int, scrape_type: str = "full") -> ScrapeJob: ...

    @abstractmethod
    async def get_job(self, job_id: int) -> Optional[ScrapeJob]: ...

    @abstractmethod
    async def update_job(self, job_id: int, **fields: Any) -> None: ...

    # Products --------------------------------------------------------------

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    async def find_product(self, manufacturer_id: int, product_code: str) -> Optional[Product]: ...

    @abstractmethod
    async def insert_product(self, **fields: Any) -> Product: ...

    @abstractmethod
    async def update_product(self, product_id: int, **fields: Any) -> None: ...

    @abstractmethod
    async def count_products_with_codes(self, manufacturer_id: int, codes: Iterable[str]) -> int: ...

    @abstractmethod
    async def list_unnormalized_products(
        self, scope: Scope, after_id: int, limit: int
    ) -> list[Product]: ...

    @abstractmethod
    async def count_unnormalized_products(self, scope: Scope, after_id: int = 0) -> int: ...

    @abstractmethod
    async def list_products_missing_embedding(self, scope: Scope, limit: int) -> list[Product]: ...

    @abstractmethod
    async def count_products_missing_embedding(self, scope: Scope) -> int: ...

    # Product files ---------------------------------------------------------

    @abstractmethod
    async def replace_auto_files(self, product_id: int, files: list[dict[str, Any]]) -> int:
        """Delete pipeline-attached files for a product and insert ``files``.

        Files with ``uploaded_by`` set are kept. Returns the number inserted.
        """

    @abstractmethod
    async def list_files(self, product_id: int) -> list[ProductFile]: ...

    @abstractmethod
    async def list_unparsed_pdf_files(
        self, scope: Scope, after_id: int, limit: int
    ) -> list[ProductFile]: ...

    @abstractmethod
    async def count_unparsed_pdf_files(self, scope: Scope, after_id: int = 0) -> int: ...

    @abstractmethod
    async def update_file(self, file_id: int, **fields: Any) -> None: ...

    # Pillar schemas --------------------------------------------------------

    @abstractmethod
    async def get_pillar_schema(self, pillar: str) -> Optional[PillarSchema]: ...

    # Knowledge base --------------------------------------------------------

    @abstractmethod
    async def create_knowledge_document(
        self, organization_id: int, source_file: str, pillar: Optional[str]
    ) -> KnowledgeDocument:
        """Create the next generation for ``source_file``. Earlier generations are untouched."""

    @abstractmethod
    async def add_knowledge_chunks(self, document_id: int, chunks: list[dict[str, Any]]) -> int: ...

    @abstractmethod
    async def update_knowledge_document(self, document_id: int, **fields: Any) -> None: ...


class SqlCatalogStore(CatalogStore):
    """CatalogStore backed by the async SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    # Helpers ---------------------------------------------------------------

    @staticmethod
    def _apply_product_scope(query, scope: Scope):
        if scope.manufacturer_id is not None:
            query = query.where(Product.manufacturer_id == scope.manufacturer_id)
        if scope.organization_id is not None:
            query = query.where(Product.organization_id == scope.organization_id)
        return query

    async def _update_row(self, model, row_id: int, fields: dict[str, Any]) -> None:
        if not fields:
            return
        try:
            async with self._session_factory() as db:
                await db.execute(update(model).where(model.id == row_id).values(**fields))
                await db.commit()
        except Exception as e:
            raise PersistenceError(f"Failed to update {model.__tablename__} {row_id}: {e}") from e

    async def _insert_row(self, instance):
        try:
            async with self._session_factory() as db:
                db.add(instance)
                await db.commit()
                await db.refresh(instance)
                return instance
        except Exception as e:
            raise PersistenceError(f"Failed to insert into {instance.__tablename__}: {e}") from e

    # Manufacturers ---------------------------------------------------------

    async def get_manufacturer(self, manufacturer_id: int) -> Optional[Manufacturer]:
        async with self._session_factory() as db:
            return await db.get(Manufacturer, manufacturer_id)

    async def mark_manufacturer_scraped(self, manufacturer_id: int) -> None:
        await self._update_row(Manufacturer, manufacturer_id, {"last_scraped_at": datetime.utcnow()})

    # Scrape jobs -----------------------------------------------------------

    async def create_job(self, manufacturer_id: int, scrape_type: str = "full") -> ScrapeJob:
        return await self._insert_row(
            ScrapeJob(manufacturer_id=manufacturer_id, scrape_type=scrape_type, status="queued")
        )

    async def get_job(self, job_id: int) -> Optional[ScrapeJob]:
        async with self._session_factory() as db:
            return await db.get(ScrapeJob, job_id)

    async def update_job(self, job_id: int, **fields: Any) -> None:
        await self._update_row(ScrapeJob, job_id, fields)

    # Products --------------------------------------------------------------

    async def get_product(self, product_id: int) -> Optional[Product]:
        async with self._session_factory() as db:
            return await db.get(Product, product_id)

    async def find_product(self, manufacturer_id: int, product_code: str) -> Optional[Product]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Product).where(
                    Product.manufacturer_id == manufacturer_id,
                    Product.product_code == product_code,
                )
            )
            return result.scalar_one_or_none()

    async def insert_product(self, **fields: Any) -> Product:
        return await self._insert_row(Product(**fields))

    async def update_product(self, product_id: int, **fields: Any) -> None:
        fields.setdefault("updated_at", datetime.utcnow())
        await self._update_row(Product, product_id, fields)

    async def count_products_with_codes(self, manufacturer_id: int, codes: Iterable[str]) -> int:
        codes = list(codes)
        if not codes:
            return 0
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count(Product.id)).where(
                    Product.manufacturer_id == manufacturer_id,
                    Product.product_code.in_(codes),
                )
            )
            return result.scalar() or 0

    async def list_unnormalized_products(
        self, scope: Scope, after_id: int, limit: int
    ) -> list[Product]:
        query = (
            select(Product)
            .where(Product.normalized_at.is_(None), Product.id > after_id)
            .order_by(Product.id.asc())
            .limit(limit)
        )
        query = self._apply_product_scope(query, scope)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_unnormalized_products(self, scope: Scope, after_id: int = 0) -> int:
        query = select(func.count(Product.id)).where(
            Product.normalized_at.is_(None), Product.id > after_id
        )
        query = self._apply_product_scope(query, scope)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return result.scalar() or 0

    async def list_products_missing_embedding(self, scope: Scope, limit: int) -> list[Product]:
        query = (
            select(Product)
            .where(Product.embedding.is_(None))
            .order_by(Product.id.asc())
            .limit(limit)
        )
        query = self._apply_product_scope(query, scope)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_products_missing_embedding(self, scope: Scope) -> int:
        query = select(func.count(Product.id)).where(Product.embedding.is_(None))
        query = self._apply_product_scope(query, scope)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return result.scalar() or 0

    # Product files ---------------------------------------------------------

    async def replace_auto_files(self, product_id: int, files: list[dict[str, Any]]) -> int:
        try:
            async with self._session_factory() as db:
                await db.execute(
                    delete(ProductFile).where(
                        ProductFile.product_id == product_id,
                        ProductFile.uploaded_by.is_(None),
                    )
                )
                for file_fields in files:
                    db.add(ProductFile(product_id=product_id, **file_fields))
                await db.commit()
                return len(files)
        except Exception as e:
            raise PersistenceError(f"Failed to replace files for product {product_id}: {e}") from e

    async def list_files(self, product_id: int) -> list[ProductFile]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ProductFile).where(ProductFile.product_id == product_id).order_by(ProductFile.id)
            )
            return list(result.scalars().all())

    def _unparsed_pdf_query(self, query, scope: Scope, after_id: int):
        query = query.where(
            ProductFile.file_url.is_not(None),
            ProductFile.parsed_data.is_(None),
            ProductFile.mime_type == PDF_MIME_TYPE,
            ProductFile.id > after_id,
        )
        if scope.manufacturer_id is not None or scope.organization_id is not None:
            product_ids = self._apply_product_scope(select(Product.id), scope)
            query = query.where(ProductFile.product_id.in_(product_ids))
        return query

    async def list_unparsed_pdf_files(
        self, scope: Scope, after_id: int, limit: int
    ) -> list[ProductFile]:
        query = self._unparsed_pdf_query(select(ProductFile), scope, after_id)
        query = query.order_by(ProductFile.id.asc()).limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_unparsed_pdf_files(self, scope: Scope, after_id: int = 0) -> int:
        query = self._unparsed_pdf_query(select(func.count(ProductFile.id)), scope, after_id)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return result.scalar() or 0

    async def update_file(self, file_id: int, **fields: Any) -> None:
        await self._update_row(ProductFile, file_id, fields)

    # Pillar schemas --------------------------------------------------------

    async def get_pillar_schema(self, pillar: str) -> Optional[PillarSchema]:
        async with self._session_factory() as db:
            result = await db.execute(select(PillarSchema).where(PillarSchema.pillar == pillar))
            return result.scalar_one_or_none()

    # Knowledge base --------------------------------------------------------

    async def create_knowledge_document(
        self, organization_id: int, source_file: str, pillar: Optional[str]
    ) -> KnowledgeDocument:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.max(KnowledgeDocument.generation)).where(
                    KnowledgeDocument.organization_id == organization_id,
                    KnowledgeDocument.source_file == source_file,
                )
            )
            generation = (result.scalar() or 0) + 1
        return await self._insert_row(
            KnowledgeDocument(
                organization_id=organization_id,
                source_file=source_file,
                pillar=pillar,
                generation=generation,
                status="processing",
            )
        )

    async def add_knowledge_chunks(self, document_id: int, chunks: list[dict[str, Any]]) -> int:
        try:
            async with self._session_factory() as db:
                for chunk in chunks:
                    db.add(KnowledgeChunk(document_id=document_id, **chunk))
                await db.commit()
                return len(chunks)
        except Exception as e:
            raise PersistenceError(f"Failed to write chunks for document {document_id}: {e}") from e

    async def update_knowledge_document(self, document_id: int, **fields: Any) -> None:
        await self._update_row(KnowledgeDocument, document_id, fields)
