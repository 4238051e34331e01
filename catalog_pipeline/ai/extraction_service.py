"""Extraction service: product pages and raw text to structured records."""

import logging
import time
from typing import Any, Dict, List, Optional

from catalog_pipeline.ai.llm_service import LLMService, llm_service
from catalog_pipeline.ai.prompts import (
    FIELD_EXTRACTION_MAX_TOKENS,
    PAGE_ANALYSIS_MAX_TOKENS,
    PRODUCT_EXTRACTION_MAX_TOKENS,
    FieldExtraction,
    FieldExtractionPrompt,
    PageAnalysis,
    PageAnalysisPrompt,
    ProductExtractionPrompt,
)
from catalog_pipeline.errors import ExtractionError
from catalog_pipeline.ingest.base import StructuredProduct
from catalog_pipeline.ingest.html_cleaner import sanitize_html
from catalog_pipeline.metrics import extraction_calls_total, extraction_duration_seconds

logger = logging.getLogger(__name__)


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _url_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, str) and v.strip()]


class ExtractionService:
    """
    LLM-backed extraction.

    Every call goes through the JSON-mode LLM client and is recorded in the
    extraction metrics. Callers own pacing between calls.
    """

    def __init__(self, llm: Optional[LLMService] = None):
        self._llm = llm or llm_service

    async def _call(self, kind: str, prompt: str, max_tokens: int) -> Dict[str, Any]:
        start = time.monotonic()
        try:
            result = await self._llm.complete_json(prompt, max_tokens=max_tokens)
        except ExtractionError:
            extraction_calls_total.labels(kind=kind, status="error").inc()
            raise
        finally:
            extraction_duration_seconds.labels(kind=kind).observe(time.monotonic() - start)
        extraction_calls_total.labels(kind=kind, status="ok").inc()
        return result

    async def extract_product(
        self,
        html: str,
        url: str,
        manufacturer_name: str,
    ) -> Optional[StructuredProduct]:
        """
        Extract one product from a detail page.

        Args:
            html: Raw page markup
            url: Page URL (used to resolve relative links)
            manufacturer_name: Manufacturer display name for context

        Returns:
            StructuredProduct, or None when the page is not a product page

        Raises:
            ExtractionError: The call failed or returned unusable content
        """
        prompt = ProductExtractionPrompt(
            html=sanitize_html(html),
            page_url=url,
            manufacturer_name=manufacturer_name,
        ).to_prompt()
        result = await self._call("product", prompt, PRODUCT_EXTRACTION_MAX_TOKENS)

        name = result.get("product_name")
        if not name or not str(name).strip():
            logger.debug(f"No product found on {url}")
            return None

        specifications = result.get("specifications")
        confidence = result.get("extraction_confidence")
        try:
            confidence = float(confidence) if confidence is not None else None
        except (TypeError, ValueError):
            confidence = None

        return StructuredProduct(
            product_name=str(name).strip(),
            source_url=url,
            product_code=_str_or_none(result.get("product_code")),
            description=_str_or_none(result.get("description")),
            specifications=specifications if isinstance(specifications, dict) else {},
            price_text=_str_or_none(result.get("price_text")),
            pdf_urls=_url_list(result.get("pdf_urls")),
            image_urls=_url_list(result.get("image_urls")),
            extraction_confidence=confidence,
        )

    async def analyze_page(
        self,
        html: str,
        url: str,
        manufacturer_name: str,
        goal: str,
    ) -> PageAnalysis:
        """
        Classify a page and pull product, pagination and catalogue links from it.

        Unusable responses degrade to an empty "other" analysis so discovery
        can keep going with what it already has.
        """
        prompt = PageAnalysisPrompt(
            html=sanitize_html(html),
            page_url=url,
            manufacturer_name=manufacturer_name,
            goal=goal,
        ).to_prompt()
        try:
            result = await self._call("page", prompt, PAGE_ANALYSIS_MAX_TOKENS)
        except ExtractionError as e:
            logger.warning(f"Page analysis failed for {url}: {e}")
            return PageAnalysis()
        return PageAnalysis.model_validate(result)

    async def extract_fields(
        self,
        raw_text: str,
        display_name: str,
        field_definitions: Dict[str, Dict[str, Any]],
        required_fields: List[str],
    ) -> FieldExtraction:
        """
        Map raw product text onto a pillar's field schema.

        Returns:
            FieldExtraction with specifications, confidence (0-100) and the
            model's own warnings. Schema validation is the caller's job.

        Raises:
            ExtractionError: The call failed or returned unusable content
        """
        prompt = FieldExtractionPrompt(
            display_name=display_name,
            field_definitions=field_definitions,
            required_fields=required_fields,
            raw_text=raw_text,
        ).to_prompt()
        result = await self._call("fields", prompt, FIELD_EXTRACTION_MAX_TOKENS)
        return FieldExtraction.model_validate(result)


# Global extraction service instance
extraction_service = ExtractionService()
