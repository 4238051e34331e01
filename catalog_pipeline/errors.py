"""Pipeline exception hierarchy."""


class PipelineError(Exception):
    """Base class for ingestion pipeline errors."""

    pass


class ConfigurationError(PipelineError):
    """Required manufacturer setup is missing. Fatal for the job that hit it."""

    pass


class FetchError(PipelineError):
    """A page or file could not be downloaded (timeout, non-2xx, browser error)."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class ExtractionError(PipelineError):
    """The extraction service raised or returned content that could not be used."""

    pass


class PersistenceError(PipelineError):
    """A catalog store write failed."""

    pass


class SchemaNotFoundError(PipelineError):
    """No pillar schema exists for a product's category."""

    def __init__(self, pillar: str):
        self.pillar = pillar
        super().__init__(f"No schema for pillar '{pillar}'")


class SpreadsheetError(PipelineError):
    """An uploaded spreadsheet or its column mapping cannot be imported."""

    pass
