"""Tests for knowledge-base ingestion and pillar detection."""

import pytest
from sqlalchemy import func, select

from catalog_pipeline.db.models import KnowledgeChunk, KnowledgeDocument
from catalog_pipeline.errors import ExtractionError, FetchError
from catalog_pipeline.knowledge.chunker import DocumentChunker
from catalog_pipeline.knowledge.ingestor import KnowledgeIngestor, load_source
from catalog_pipeline.knowledge.pillar_detector import detect_pillar, score_pillars
from catalog_pipeline.worker.events import KNOWLEDGE_INGEST_REQUESTED, Event
from catalog_pipeline.worker.tasks import handle_knowledge_ingest
from tests.fakes import FakeEmbedding, make_pdf

COLLAR_DATASHEET = [
    "QuelStop Fire Collar datasheet\nThe intumescent fire collar seals plastic pipes.",
    "",
    "3 Fire Test Results\nTested to EN 1366-3 for 120 minutes.",
]


def _ingestor(store, embedding=None) -> KnowledgeIngestor:
    return KnowledgeIngestor(
        store,
        embedding=embedding or FakeEmbedding(),
        chunker=DocumentChunker(max_tokens=500, min_tokens=5),
    )


async def _documents(store):
    async with store._session_factory() as db:
        result = await db.execute(select(KnowledgeDocument).order_by(KnowledgeDocument.id))
        return list(result.scalars().all())


async def _chunk_count(store, document_id: int) -> int:
    async with store._session_factory() as db:
        result = await db.execute(
            select(func.count(KnowledgeChunk.id)).where(KnowledgeChunk.document_id == document_id)
        )
        return result.scalar()


def test_detect_pillar_from_filename_and_content():
    assert detect_pillar("FD30-doorset-guide.pdf") == "fire_doors"
    assert detect_pillar("guide.pdf", "Fire damper and smoke damper installation in ductwork") == "dampers"
    assert detect_pillar("notes.pdf", "Nothing relevant here") is None


def test_detect_pillar_ties_go_to_first_listed():
    scores = score_pillars("fire door intumescent")
    assert scores["fire_doors"] == scores["fire_stopping"] == 1
    assert detect_pillar("x.pdf", "fire door intumescent") == "fire_doors"


@pytest.mark.asyncio
async def test_ingest_writes_chunks_with_embeddings(store):
    result = await _ingestor(store).ingest(1, "docs/quelstop-collar.pdf", make_pdf(COLLAR_DATASHEET))

    assert result["generation"] == 1
    assert result["pillar"] == "fire_stopping"
    assert result["page_count"] == 3
    assert result["chunk_count"] >= 2

    async with store._session_factory() as db:
        chunks = (
            await db.execute(
                select(KnowledgeChunk)
                .where(KnowledgeChunk.document_id == result["document_id"])
                .order_by(KnowledgeChunk.chunk_index)
            )
        ).scalars().all()

    assert {chunk.page_number for chunk in chunks} == {1, 3}
    assert all(chunk.embedding for chunk in chunks)
    assert any(chunk.metadata_json.get("fire_test_block") for chunk in chunks if chunk.page_number == 3)

    (document,) = await _documents(store)
    assert document.status == "completed"
    assert document.chunk_count == len(chunks)


@pytest.mark.asyncio
async def test_reingest_creates_new_generation_and_keeps_old_chunks(store):
    ingestor = _ingestor(store)
    first = await ingestor.ingest(1, "docs/quelstop-collar.pdf", make_pdf(COLLAR_DATASHEET))
    first_count = await _chunk_count(store, first["document_id"])

    second = await ingestor.ingest(
        1, "docs/quelstop-collar.pdf", make_pdf(COLLAR_DATASHEET), pillar="retro_fire_stopping"
    )

    assert second["generation"] == 2
    assert second["pillar"] == "retro_fire_stopping"
    assert second["document_id"] != first["document_id"]
    assert await _chunk_count(store, first["document_id"]) == first_count

    # Generations are counted per organization
    other_org = await ingestor.ingest(2, "docs/quelstop-collar.pdf", make_pdf(COLLAR_DATASHEET))
    assert other_org["generation"] == 1


@pytest.mark.asyncio
async def test_embedding_failure_marks_document_failed(store):
    ingestor = _ingestor(store, embedding=FakeEmbedding(fail_marker="EN 1366"))

    with pytest.raises(ExtractionError):
        await ingestor.ingest(1, "docs/quelstop-collar.pdf", make_pdf(COLLAR_DATASHEET))

    (document,) = await _documents(store)
    assert document.status == "failed"
    assert await _chunk_count(store, document.id) == 0


@pytest.mark.asyncio
async def test_document_without_text_is_rejected(store):
    with pytest.raises(ExtractionError, match="No extractable text"):
        await _ingestor(store).ingest(1, "scan.pdf", make_pdf([""]))

    assert await _documents(store) == []


@pytest.mark.asyncio
async def test_load_source_reads_local_files(tmp_path):
    path = tmp_path / "collar.pdf"
    path.write_bytes(b"%PDF-1.4 test")

    assert await load_source(str(path)) == b"%PDF-1.4 test"

    with pytest.raises(FetchError):
        await load_source(str(tmp_path / "missing.pdf"))


@pytest.mark.asyncio
async def test_handle_knowledge_ingest(step, tmp_path, pipeline_deps):
    path = tmp_path / "quelstop-collar.pdf"
    path.write_bytes(make_pdf(COLLAR_DATASHEET))
    deps = pipeline_deps
    deps.knowledge.chunker = DocumentChunker(max_tokens=500, min_tokens=5)

    event = Event(
        name=KNOWLEDGE_INGEST_REQUESTED,
        data={"organization_id": 1, "source_file": str(path)},
    )
    result = await handle_knowledge_ingest(event, step, deps)

    assert result["generation"] == 1
    assert step.executed[0] == "create-document"
    assert step.executed[-1] == "finalize-document"
