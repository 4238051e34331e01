"""SQLAlchemy database models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere. Python None is stored as SQL NULL
# so "IS NULL" filters (parsed_data, embedding) behave as expected.
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")
VectorType = JSON(none_as_null=True).with_variant(ARRAY(Float), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Manufacturer(Base):
    """Manufacturer whose website or spreadsheets feed the catalog."""

    __tablename__ = "manufacturers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    website_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Structured scraping config: product_list_url, selectors, pagination.
    # Absent -> AI-guided discovery.
    scraper_config: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    default_pillar: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_scraped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    products: Mapped[list["Product"]] = relationship("Product", back_populates="manufacturer")


class Product(Base):
    """Catalog product. (manufacturer_id, product_code) is the dedup key."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    manufacturer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("manufacturers.id"), nullable=False, index=True
    )
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    pillar: Mapped[str] = mapped_column(String(64), nullable=False)
    product_code: Mapped[str] = mapped_column(String(128), nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    specifications: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    scraped_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Normalization
    normalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    normalization_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 0-100
    normalization_warnings: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    needs_review: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    embedding: Mapped[Optional[list[float]]] = mapped_column(VectorType, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    manufacturer: Mapped["Manufacturer"] = relationship("Manufacturer", back_populates="products")
    files: Mapped[list["ProductFile"]] = relationship(
        "ProductFile", back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("manufacturer_id", "product_code", name="uq_product_manufacturer_code"),
    )


class ProductFile(Base):
    """File linked to a product (datasheet, certificate, ...)."""

    __tablename__ = "product_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str] = mapped_column(String(64), default="other", nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # NULL until the PDF pipeline has run; {"empty": true, ...} when nothing was extractable
    parsed_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    file_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # Archive location

    # NULL for files attached by the pipeline; set for human uploads
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    product: Mapped["Product"] = relationship("Product", back_populates="files")


class PillarSchema(Base):
    """Field schema for a product category."""

    __tablename__ = "pillar_schemas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pillar: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # {"fire_rating_minutes": {"type": "number", "label": ..., "example": ..., "options": [...]}}
    field_definitions: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    required_fields: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)


class ScrapeJob(Base):
    """Tracks a manufacturer scrape from request to terminal state."""

    __tablename__ = "scrape_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    manufacturer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("manufacturers.id"), nullable=False, index=True
    )
    scrape_type: Mapped[str] = mapped_column(String(32), default="full", nullable=False)
    # queued, running, completed, failed
    status: Mapped[str] = mapped_column(String(20), default="queued", nullable=False)

    # {"stage": str, "current": int, "total": int, "found": int, "stats": {...}, "detail": str}
    progress: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_log: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    products_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    products_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class KnowledgeDocument(Base):
    """One ingestion generation of a knowledge-base source document."""

    __tablename__ = "knowledge_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    source_file: Mapped[str] = mapped_column(Text, nullable=False)
    generation: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    pillar: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    page_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    chunks: Mapped[list["KnowledgeChunk"]] = relationship(
        "KnowledgeChunk", back_populates="document", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "source_file", "generation", name="uq_knowledge_document_generation"
        ),
    )


class KnowledgeChunk(Base):
    """Immutable retrieval chunk. Re-ingestion writes a new document generation."""

    __tablename__ = "knowledge_chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("knowledge_documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_type: Mapped[str] = mapped_column(String(32), nullable=False)  # text, table, image_description
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    embedding: Mapped[Optional[list[float]]] = mapped_column(VectorType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    document: Mapped["KnowledgeDocument"] = relationship("KnowledgeDocument", back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_knowledge_chunk_index"),
    )
