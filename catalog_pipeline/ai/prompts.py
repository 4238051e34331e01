"""Centralized prompt templates for LLM interactions."""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class PageAnalysisPrompt(BaseModel):
    """Prompt schema for classifying a navigation or listing page."""

    html: str
    page_url: str
    manufacturer_name: str
    goal: str

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        return f"""You are analyzing a web page from a fire protection product manufacturer's website.

PAGE URL: {self.page_url}
MANUFACTURER: {self.manufacturer_name}
GOAL: {self.goal}

Analyze the HTML below and determine:
1. page_type: Is this a "product_listing" (shows multiple products with links to individual product pages), "product_detail" (single product with specs/description), "navigation" (homepage or category page with links to product sections), or "other"?
2. product_urls: Extract ALL href URLs that link to individual product pages. Return ABSOLUTE URLs only (resolve relative URLs against the page URL).
3. next_page_url: If this is a listing with pagination, the absolute URL of the next page. null if none.
4. catalogue_link: If this is a navigation/homepage, the absolute URL that leads to the product catalogue or listing. null if not applicable.
5. confidence: 0-100 how confident you are in this classification.

HTML:
{self.html}

Return ONLY valid JSON:
{{
  "page_type": "product_listing",
  "product_urls": ["https://..."],
  "next_page_url": null,
  "catalogue_link": null,
  "confidence": 85
}}"""


class ProductExtractionPrompt(BaseModel):
    """Prompt schema for extracting one product from a detail page."""

    html: str
    page_url: str
    manufacturer_name: str

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        return f"""You are a fire protection product data specialist. Extract structured product information from this web page.

MANUFACTURER: {self.manufacturer_name}
PAGE URL: {self.page_url}

Extract the following fields:
- product_name (required): The main product name/title
- product_code: SKU, part number, or product reference code if visible
- description: First 500 characters of the main product description
- specifications: Key-value pairs from any specification table, feature list, or technical data (e.g. {{"Fire Rating": "EI 120", "Material": "Steel"}})
- price_text: Price if displayed (e.g. "£45.99 ex VAT")
- pdf_urls: Absolute URLs of any PDF downloads (datasheets, installation guides, certificates)
- image_urls: Absolute URLs of product images (not icons, logos, or decorative images)
- extraction_confidence: 0-100 confidence in extraction quality

PAGE HTML:
{self.html}

RULES:
1. Only extract data that is clearly visible on the page. Do not invent or guess.
2. For specifications, extract key-value pairs from tables, definition lists, or bullet point lists.
3. PDF URLs often end in .pdf or link to document/download pages.
4. Ignore navigation images, social media icons, and banner ads.
5. If this page is NOT a product page, return {{"product_name": null}}.
6. Resolve all URLs to absolute URLs based on the page URL.

Return ONLY valid JSON:
{{
  "product_name": "Product Name Here",
  "product_code": "SKU-123",
  "description": "Product description...",
  "specifications": {{"Fire Rating": "EI 60", "Material": "Steel"}},
  "price_text": null,
  "pdf_urls": ["https://example.com/datasheet.pdf"],
  "image_urls": ["https://example.com/product.jpg"],
  "extraction_confidence": 85
}}"""


class FieldExtractionPrompt(BaseModel):
    """Prompt schema for mapping raw product text onto a pillar schema."""

    display_name: str
    field_definitions: Dict[str, Dict[str, Any]]
    required_fields: List[str]
    raw_text: str

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        field_lines = "\n".join(
            f'- "{key}" ({definition.get("type", "text")}): {definition.get("label", key)}. '
            f'Example: {definition.get("example", "")}'
            for key, definition in self.field_definitions.items()
        )
        required = ", ".join(self.required_fields)

        return f"""You are a fire protection product data specialist. Extract structured specifications from the following raw product data.

PILLAR: {self.display_name}

EXPECTED FIELDS:
{field_lines}

REQUIRED FIELDS: {required}

RAW DATA:
{self.raw_text}

INSTRUCTIONS:
1. Extract values for each field from the raw data
2. Use the exact field keys listed above
3. Match the expected types (text vs number)
4. If a value is not found, omit the field (don't guess)
5. Normalize units (mm, minutes, °C) to match examples
6. For the "confidence" field, rate 0-100 how confident you are in the extraction

Return ONLY valid JSON in this format:
{{
  "specifications": {{ ... extracted key-value pairs ... }},
  "confidence": 85,
  "warnings": ["field X not found in source data", ...]
}}"""


def build_raw_text(
    description: Optional[str],
    scraped_data: Optional[Dict[str, Any]],
    specifications: Optional[Dict[str, Any]],
    max_chars: int,
) -> str:
    """Serialize a product's raw fields for a field-extraction prompt."""
    raw = json.dumps(
        {
            "description": description,
            "scraped_data": scraped_data,
            "existing_specs": specifications,
        },
        default=str,
        ensure_ascii=False,
    )
    return raw[:max_chars]


# Response models for JSON-mode output


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def _as_confidence(value: Any) -> float:
    try:
        return max(0.0, min(100.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


class PageAnalysis(BaseModel):
    """Parsed page-analysis response."""

    page_type: str = "other"  # product_listing, product_detail, navigation, other
    product_urls: List[str] = Field(default_factory=list)
    next_page_url: Optional[str] = None
    catalogue_link: Optional[str] = None
    confidence: float = 0.0

    @field_validator("page_type", mode="before")
    @classmethod
    def _page_type(cls, value: Any) -> str:
        return str(value) if value else "other"

    @field_validator("product_urls", mode="before")
    @classmethod
    def _urls(cls, value: Any) -> List[str]:
        return _as_str_list(value)

    @field_validator("next_page_url", "catalogue_link", mode="before")
    @classmethod
    def _optional_url(cls, value: Any) -> Optional[str]:
        return str(value) if value else None

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _as_confidence(value)


class FieldExtraction(BaseModel):
    """Parsed field-extraction response."""

    specifications: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    warnings: List[str] = Field(default_factory=list)

    @field_validator("specifications", mode="before")
    @classmethod
    def _specifications(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _as_confidence(value)

    @field_validator("warnings", mode="before")
    @classmethod
    def _warnings(cls, value: Any) -> List[str]:
        return _as_str_list(value)


# Token ceilings per call kind
PAGE_ANALYSIS_MAX_TOKENS = 2000
PRODUCT_EXTRACTION_MAX_TOKENS = 1500
FIELD_EXTRACTION_MAX_TOKENS = 1000
