"""Schema-driven normalization of scraped product data.

Each invocation processes one bounded batch of products with no
``normalized_at``, oldest first, and hands back a continuation cursor when
more remain in the same scope.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from catalog_pipeline.ai.extraction_service import ExtractionService, extraction_service
from catalog_pipeline.ai.prompts import build_raw_text
from catalog_pipeline.config import settings
from catalog_pipeline.db.store import CatalogStore, Scope
from catalog_pipeline.errors import SchemaNotFoundError
from catalog_pipeline.ingest.base import BatchCursor, BatchReport
from catalog_pipeline.metrics import products_normalized_total
from catalog_pipeline.normalize.schema import PillarSchemaSpec, validate_specifications
from catalog_pipeline.worker.steps import StepContext, pause, run_step

logger = logging.getLogger(__name__)


def _snapshot(product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "pillar": product.pillar,
        "product_name": product.product_name,
        "description": product.description,
        "scraped_data": product.scraped_data,
        "specifications": product.specifications or {},
    }


class ProductNormalizer:
    """Map raw product text onto pillar schemas with the extraction service."""

    def __init__(
        self,
        store: CatalogStore,
        extraction: Optional[ExtractionService] = None,
        batch_size: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        raw_text_chars: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.extraction = extraction or extraction_service
        self.batch_size = batch_size or settings.normalize_batch_size
        self.delay_seconds = (
            delay_seconds if delay_seconds is not None else settings.extraction_delay_seconds
        )
        self.raw_text_chars = raw_text_chars or settings.normalization_raw_text_chars
        self._sleep = sleep
        self._schema_cache: Dict[str, PillarSchemaSpec] = {}

    async def _get_schema(self, pillar: str) -> PillarSchemaSpec:
        if pillar not in self._schema_cache:
            row = await self.store.get_pillar_schema(pillar)
            if row is None:
                raise SchemaNotFoundError(pillar)
            self._schema_cache[pillar] = PillarSchemaSpec.from_model(row)
        return self._schema_cache[pillar]

    async def normalize_product(self, product: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize one product snapshot and write the result.

        Returns:
            {"confidence": float, "warnings": [str]}

        Raises:
            SchemaNotFoundError: The product's pillar has no schema
            ExtractionError: The extraction call failed
        """
        schema = await self._get_schema(product["pillar"])
        raw_text = build_raw_text(
            product.get("description"),
            product.get("scraped_data"),
            product.get("specifications"),
            self.raw_text_chars,
        )

        extracted = await self.extraction.extract_fields(
            raw_text,
            schema.display_name,
            schema.field_definitions(),
            schema.required_fields,
        )
        validated = validate_specifications(extracted.specifications, schema)
        warnings = extracted.warnings + validated.warnings

        await self.store.update_product(
            product["id"],
            specifications=validated.merge_into(product.get("specifications")),
            normalized_at=datetime.utcnow(),
            normalization_confidence=extracted.confidence,
            normalization_warnings=warnings,
            needs_review=True,
        )
        return {"confidence": extracted.confidence, "warnings": warnings}

    async def run_batch(
        self,
        scope: Scope,
        cursor: Optional[BatchCursor] = None,
        step: Optional[StepContext] = None,
    ) -> BatchReport:
        """
        Normalize one batch.

        Args:
            scope: Manufacturer and/or organization filter
            cursor: Resume after this id; None starts from the oldest product
            step: Optional StepContext; each product becomes a durable step

        Returns:
            BatchReport; ``continuation`` is set when rows remain past the batch
        """
        after_id = cursor.after_id if cursor else 0
        self._schema_cache = {}
        report = BatchReport()

        async def load():
            rows = await self.store.list_unnormalized_products(scope, after_id, self.batch_size)
            return [_snapshot(row) for row in rows]

        products = await run_step(step, "get-unnormalized-products", load)
        if not products:
            logger.info(f"No products to normalize in scope {scope.to_dict()}")
            return report

        for index, product in enumerate(products):

            async def normalize(product=product):
                try:
                    outcome = await self.normalize_product(product)
                except Exception as e:
                    logger.warning(f"Normalization failed for product {product['id']}: {e}")
                    products_normalized_total.labels(outcome="failed").inc()
                    return {"status": "failed", "reason": str(e)}
                products_normalized_total.labels(outcome="normalized").inc()
                return {"status": "normalized", "reason": None, **outcome}

            result = await run_step(step, f"normalize-{product['id']}", normalize)
            report.add(product["id"], result["status"], result.get("reason"))

            if index < len(products) - 1:
                await pause(step, f"delay-{product['id']}", self.delay_seconds, self._sleep)

        last_id = products[-1]["id"]

        async def check_remaining():
            return await self.store.count_unnormalized_products(scope, after_id=last_id)

        remaining = await run_step(step, "check-remaining", check_remaining)
        if remaining > 0:
            report.continuation = BatchCursor(after_id=last_id, remaining=remaining)

        logger.info(
            f"Normalized {report.count('normalized')}/{report.total} products "
            f"(failed {report.count('failed')}, remaining {remaining})"
        )
        return report
