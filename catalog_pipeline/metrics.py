"""Prometheus metrics for the catalog ingestion pipeline."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("catalog_pipeline", "Catalog ingestion pipeline info")
app_info.info({"version": "0.1.0", "name": "catalog-pipeline"})

# Fetch metrics
pages_fetched_total = Counter(
    "catalog_pages_fetched_total",
    "Pages requested from the headless fetcher",
    ["status"],  # ok, failed
)

pdf_downloads_total = Counter(
    "catalog_pdf_downloads_total",
    "Linked PDF download attempts",
    ["status"],  # ok, failed, empty
)

# Extraction metrics
extraction_calls_total = Counter(
    "catalog_extraction_calls_total",
    "Calls made to the extraction service",
    ["kind", "status"],  # kind: product, page, fields
)

extraction_duration_seconds = Histogram(
    "catalog_extraction_duration_seconds",
    "Time spent waiting on the extraction service",
    ["kind"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# Catalog metrics
products_upserted_total = Counter(
    "catalog_products_upserted_total",
    "Catalog upsert outcomes",
    ["outcome"],  # created, updated, failed
)

products_normalized_total = Counter(
    "catalog_products_normalized_total",
    "Normalization outcomes",
    ["outcome"],  # normalized, failed
)

embeddings_generated_total = Counter(
    "catalog_embeddings_generated_total",
    "Embedding outcomes",
    ["target", "outcome"],  # target: product, chunk
)

# Orchestration metrics
event_deliveries_total = Counter(
    "catalog_event_deliveries_total",
    "Event handler deliveries",
    ["event", "outcome"],  # ok, error, redelivered
)

scrape_jobs_total = Counter(
    "catalog_scrape_jobs_total",
    "Scrape jobs reaching a terminal state",
    ["method", "status"],
)

llm_tokens_total = Counter(
    "catalog_llm_tokens_total",
    "Tokens billed by the LLM provider",
    ["kind"],  # prompt, completion
)
