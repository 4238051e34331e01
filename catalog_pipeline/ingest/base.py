"""Shared value types for the ingestion pipeline."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class StructuredProduct:
    """Product candidate extracted from a page, a spreadsheet row, or a structured scrape."""

    product_name: str
    source_url: Optional[str] = None
    product_code: Optional[str] = None
    description: Optional[str] = None
    specifications: dict[str, Any] = field(default_factory=dict)
    price_text: Optional[str] = None
    pdf_urls: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)
    pillar: Optional[str] = None
    extraction_confidence: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StructuredProduct":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class FetchResult:
    """Raw markup for one URL. html is None when the fetch failed."""

    url: str
    html: Optional[str]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.html)


@dataclass
class DiscoveryResult:
    """Candidate product URLs plus the method that found them."""

    product_urls: list[str]
    method: str  # "sitemap", "ai-navigation", "both"

    def to_dict(self) -> dict[str, Any]:
        return {"product_urls": list(self.product_urls), "method": self.method}


@dataclass
class ItemResult:
    """Outcome for one item in a batch."""

    key: str
    status: str  # created, updated, normalized, processed, embedded, skipped, failed
    reason: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class BatchCursor:
    """Continuation point for a self-continuing batch.

    Rows are processed in ascending id order; the next invocation resumes
    after ``after_id``. ``remaining`` is the backlog counted past the cursor.
    """

    after_id: int = 0
    remaining: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"after_id": self.after_id, "remaining": self.remaining}


@dataclass
class BatchReport:
    """Per-item results collected over one batch invocation."""

    items: list[ItemResult] = field(default_factory=list)
    continuation: Optional[BatchCursor] = None

    def add(self, key: Any, status: str, reason: Optional[str] = None) -> ItemResult:
        result = ItemResult(key=str(key), status=status, reason=reason)
        self.items.append(result)
        return result

    def count(self, status: str) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def failures(self) -> list[ItemResult]:
        return [item for item in self.items if item.failed]

    @property
    def total(self) -> int:
        return len(self.items)

    def error_lines(self, limit: Optional[int] = None) -> list[str]:
        lines = [f"{item.key}: {item.reason}" for item in self.failures]
        return lines[:limit] if limit else lines

    def summary(self) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for item in self.items:
            counts[item.status] = counts.get(item.status, 0) + 1
        return {
            "total": self.total,
            "counts": counts,
            "remaining": self.continuation.remaining if self.continuation else 0,
        }


class PageFetcher(ABC):
    """Headless fetch service contract."""

    @abstractmethod
    async def fetch(
        self,
        urls: list[str],
        concurrency: int,
        timeout_ms: int,
    ) -> list[FetchResult]:
        """
        Fetch raw markup for each URL.

        Returns one FetchResult per input URL, in input order. A URL that
        could not be loaded yields ``html=None``; this method never raises
        for individual URLs.
        """
        pass

    async def close(self) -> None:
        pass
