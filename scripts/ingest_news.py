#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from newsrag.config import get_settings
from newsrag.errors import NewsRagError
from newsrag.ingestion import load_documents
from newsrag.services import build_services


def main() -> int:
    parser = argparse.ArgumentParser(description="Index a news article dump into the vector store.")
    parser.add_argument("path", type=Path, help="JSON array, {\"documents\": [...]} object, or .jsonl file")
    parser.add_argument("--reset", action="store_true", help="Drop the collection before indexing")
    args = parser.parse_args()

    services = build_services(get_settings())
    try:
        documents = load_documents(args.path)
        if args.reset:
            services.index.delete_collection()
        services.index.ensure_collection()
        report = services.ingestor.ingest(documents)
    except NewsRagError as exc:
        print(f"Ingestion failed ({exc.kind}): {exc}", file=sys.stderr)
        return 1
    print(
        json.dumps(
            {
                "received": report.received,
                "indexed": report.indexed,
                "duplicates": report.duplicates,
                "filtered": report.filtered,
                "failed": report.failed,
                "collection": services.index.info(),
            },
            indent=2,
        ),
    )
    return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
