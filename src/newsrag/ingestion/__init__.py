"""Document ingestion pipeline."""

from .service import (
    IngestionConfig,
    IngestionError,
    IngestionReport,
    NewsIngestor,
    article_text,
    dedupe_by_url,
    document_from_record,
    load_documents,
)

__all__ = [
    "IngestionConfig",
    "IngestionError",
    "IngestionReport",
    "NewsIngestor",
    "article_text",
    "dedupe_by_url",
    "document_from_record",
    "load_documents",
]
