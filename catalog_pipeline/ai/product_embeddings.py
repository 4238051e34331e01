"""Product embedding batch.

One bounded batch per invocation. The batch does not queue itself again when
products remain; upstream events (scrape completion, spreadsheet import) and
the backlog sweep trigger it per scope.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from catalog_pipeline.ai.embedding_service import EmbeddingService, embedding_service
from catalog_pipeline.config import settings
from catalog_pipeline.db.store import CatalogStore, Scope
from catalog_pipeline.ingest.base import BatchReport
from catalog_pipeline.metrics import embeddings_generated_total
from catalog_pipeline.worker.steps import StepContext, run_step

logger = logging.getLogger(__name__)


def build_product_text(product: Dict[str, Any], max_chars: Optional[int] = None) -> str:
    """
    Flatten a product into one embedding input.

    Name, description and pillar come first, then one ``key: value`` part
    per specification. Empty parts are skipped.
    """
    parts = [product.get("product_name"), product.get("description"), product.get("pillar")]
    parts.extend(f"{key}: {value}" for key, value in (product.get("specifications") or {}).items())
    text = ". ".join(str(part) for part in parts if part)
    return text[: max_chars or settings.embedding_max_chars]


@dataclass
class EmbeddingReport(BatchReport):
    """BatchReport plus the backlog left in scope after the batch."""

    remaining: int = 0

    def summary(self) -> Dict[str, Any]:
        data = super().summary()
        data["remaining"] = self.remaining
        return data


class ProductEmbedder:
    """Store a vector for every product in scope that has none."""

    def __init__(
        self,
        store: CatalogStore,
        embedding: Optional[EmbeddingService] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store
        self.embedding = embedding or embedding_service
        self.batch_size = batch_size or settings.embedding_batch_size

    async def run_batch(self, scope: Scope, step: Optional[StepContext] = None) -> EmbeddingReport:
        report = EmbeddingReport()

        async def load():
            rows = await self.store.list_products_missing_embedding(scope, self.batch_size)
            return [
                {
                    "id": row.id,
                    "product_name": row.product_name,
                    "description": row.description,
                    "pillar": row.pillar,
                    "specifications": row.specifications or {},
                }
                for row in rows
            ]

        products = await run_step(step, "get-products", load)

        for product in products:

            async def embed(product=product):
                try:
                    vector = await self.embedding.embed(build_product_text(product))
                    await self.store.update_product(product["id"], embedding=vector)
                except Exception as e:
                    logger.warning(f"Embedding failed for product {product['id']}: {e}")
                    embeddings_generated_total.labels(target="product", outcome="failed").inc()
                    return {"status": "failed", "reason": str(e)}
                embeddings_generated_total.labels(target="product", outcome="embedded").inc()
                return {"status": "embedded", "reason": None}

            result = await run_step(step, f"embed-{product['id']}", embed)
            report.add(product["id"], result["status"], result.get("reason"))

        report.remaining = await run_step(
            step, "count-remaining", lambda: self.store.count_products_missing_embedding(scope)
        )
        logger.info(
            f"Embedded {report.count('embedded')}/{report.total} products "
            f"({report.remaining} still without embeddings in scope {scope.to_dict()})"
        )
        return report
