"""Knowledge-base document ingestion.

A source PDF is split into pages, chunked, embedded and written as a new
KnowledgeDocument generation. Chunks of earlier generations are never
touched.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from catalog_pipeline.ai.embedding_service import EmbeddingService, embedding_service
from catalog_pipeline.config import settings
from catalog_pipeline.db.store import CatalogStore
from catalog_pipeline.errors import ExtractionError, FetchError
from catalog_pipeline.ingest.fetch_pipeline import chunked
from catalog_pipeline.ingest.pdf_parser import ParsedPdf, parse_pdf
from catalog_pipeline.knowledge.chunker import Chunk, DocumentChunker, PageText
from catalog_pipeline.knowledge.pillar_detector import detect_pillar
from catalog_pipeline.metrics import embeddings_generated_total
from catalog_pipeline.worker.steps import StepContext, run_step

logger = logging.getLogger(__name__)

# Text sample used for pillar detection
PILLAR_SAMPLE_CHARS = 5000


async def load_source(source_file: str, timeout_seconds: Optional[float] = None) -> bytes:
    """
    Read a source document from a local path or an http(s) URL.

    Raises:
        FetchError: The file could not be read or downloaded
    """
    if source_file.startswith(("http://", "https://")):
        try:
            async with httpx.AsyncClient(
                timeout=timeout_seconds or settings.pdf_download_timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": settings.http_user_agent},
            ) as client:
                response = await client.get(source_file)
                response.raise_for_status()
                return response.content
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(source_file, str(e) or type(e).__name__) from e

    try:
        return await asyncio.to_thread(Path(source_file).read_bytes)
    except OSError as e:
        raise FetchError(source_file, str(e)) from e


def extract_pages(parsed: ParsedPdf) -> List[PageText]:
    """Per-page text; blank pages are dropped, the rest keep their page numbers."""
    return [
        PageText(page_number=index + 1, text=text)
        for index, text in enumerate(parsed.pages)
        if text.strip()
    ]


class KnowledgeIngestor:
    """Chunk, embed and persist knowledge-base documents."""

    def __init__(
        self,
        store: CatalogStore,
        embedding: Optional[EmbeddingService] = None,
        chunker: Optional[DocumentChunker] = None,
        embed_batch_size: Optional[int] = None,
    ):
        self.store = store
        self.embedding = embedding or embedding_service
        self.chunker = chunker or DocumentChunker()
        self.embed_batch_size = embed_batch_size or settings.embedding_batch_size

    async def _embed_chunks(self, chunks: List[Chunk]) -> List[Dict[str, Any]]:
        try:
            vectors = await self.embedding.embed_batch([chunk.text for chunk in chunks])
        except Exception:
            embeddings_generated_total.labels(target="chunk", outcome="failed").inc(len(chunks))
            raise
        embeddings_generated_total.labels(target="chunk", outcome="embedded").inc(len(chunks))
        records = []
        for chunk, vector in zip(chunks, vectors):
            record = chunk.to_record()
            record["embedding"] = vector
            records.append(record)
        return records

    async def ingest(
        self,
        organization_id: int,
        source_file: str,
        data: bytes,
        pillar: Optional[str] = None,
        step: Optional[StepContext] = None,
    ) -> Dict[str, Any]:
        """
        Ingest one document as a new generation.

        Args:
            organization_id: Owning organization
            source_file: Source name or path, recorded on the document
            data: Raw PDF bytes
            pillar: Category; detected from filename and text when omitted
            step: Optional StepContext; document creation, each embed batch
                and the final status update become durable steps

        Returns:
            {"document_id", "generation", "pillar", "page_count", "chunk_count"}

        Raises:
            ExtractionError: The PDF is unreadable or has no text
        """
        parsed = parse_pdf(data)
        pages = extract_pages(parsed)
        if not pages:
            raise ExtractionError(f"No extractable text in {source_file}")

        if pillar is None:
            sample = "\n".join(page.text for page in pages)[:PILLAR_SAMPLE_CHARS]
            pillar = detect_pillar(Path(source_file).name, sample)

        async def create_document():
            document = await self.store.create_knowledge_document(organization_id, source_file, pillar)
            return {"id": document.id, "generation": document.generation}

        document = await run_step(step, "create-document", create_document)
        document_id = document["id"]

        chunks = self.chunker.chunk_pages(pages)
        try:
            for batch_index, batch in enumerate(chunked(chunks, self.embed_batch_size)):

                async def write_batch(batch=batch):
                    records = await self._embed_chunks(batch)
                    return await self.store.add_knowledge_chunks(document_id, records)

                await run_step(step, f"embed-chunks-{batch_index}", write_batch)
        except Exception as e:
            logger.error(f"Knowledge ingest of {source_file} failed: {e}")
            await self.store.update_knowledge_document(document_id, status="failed")
            raise

        async def finalize():
            await self.store.update_knowledge_document(
                document_id,
                status="completed",
                page_count=parsed.page_count,
                chunk_count=len(chunks),
            )
            return True

        await run_step(step, "finalize-document", finalize)
        logger.info(
            f"Ingested {source_file} (generation {document['generation']}, pillar {pillar}): "
            f"{parsed.page_count} pages, {len(chunks)} chunks"
        )
        return {
            "document_id": document_id,
            "generation": document["generation"],
            "pillar": pillar,
            "page_count": parsed.page_count,
            "chunk_count": len(chunks),
        }
