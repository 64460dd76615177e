"""CLI for evaluating NewsRAG retrieval accuracy."""

from __future__ import annotations

import argparse
import json
import statistics
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence
from uuid import uuid4

import chromadb

from newsrag.cache.store import Cache, InMemoryKeyValueStore
from newsrag.config import Settings, get_settings
from newsrag.embeddings import EmbeddingConfig, HashEmbeddingBackend
from newsrag.index import ChromaVectorIndex
from newsrag.ingestion import IngestionConfig, NewsIngestor, document_from_record
from newsrag.models import Document
from newsrag.services.generation import TemplateGenerator
from newsrag.services.query import QueryConfig, QueryService


@dataclass(frozen=True)
class QueryFixture:
    question: str
    relevant_document_ids: Sequence[str]
    expected_answer: str | None = None


@dataclass(frozen=True)
class EvaluationResult:
    total_queries: int
    hits: int
    recall_at_k: float
    mean_reciprocal_rank: float
    average_latency_ms: float
    details: List[dict]

    def to_dict(self) -> dict:
        return {
            "total_queries": self.total_queries,
            "hits": self.hits,
            "recall_at_k": self.recall_at_k,
            "mean_reciprocal_rank": self.mean_reciprocal_rank,
            "average_latency_ms": self.average_latency_ms,
            "details": self.details,
        }


def load_dataset(path: Path) -> tuple[list[Document], list[QueryFixture]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    documents = [document_from_record(item) for item in data["documents"]]
    queries = [
        QueryFixture(
            question=item["question"],
            relevant_document_ids=item.get("relevant_document_ids", []),
            expected_answer=item.get("expected_answer"),
        )
        for item in data["queries"]
    ]
    return documents, queries


def run_evaluation(
    dataset_path: Path,
    *,
    top_k: int = 3,
    score_floor: float = 0.0,
    settings: Settings | None = None,
    json_out: Path | None = None,
    markdown_out: Path | None = None,
) -> EvaluationResult:
    """Ingest the dataset into a throwaway index and score retrieval per query.

    Runs fully offline: hash embeddings, an ephemeral Chroma client and the
    template generator, so results are reproducible between runs.
    """

    settings = settings or get_settings()
    documents, queries = load_dataset(dataset_path)

    embedder = HashEmbeddingBackend(EmbeddingConfig(provider="hash", dim=settings.embedding_dim))
    # ephemeral clients share one in-process system, so every run gets its own collection
    index = ChromaVectorIndex(
        f"evaluation-{uuid4().hex[:12]}",
        dim=settings.embedding_dim,
        client=chromadb.EphemeralClient(),
    )
    index.ensure_collection()
    ingestor = NewsIngestor(
        embedder,
        index,
        IngestionConfig(
            batch_size=settings.ingestion_batch_size,
            batch_pause_seconds=0.0,
            min_title_length=0,
            min_content_length=0,
            max_embed_chars=settings.embedding_max_chars,
        ),
    )
    ingestor.ingest(documents)
    url_lookup = {document.url: document.id for document in documents}

    service = QueryService(
        embedder,
        index,
        TemplateGenerator(),
        Cache(InMemoryKeyValueStore()),
        QueryConfig(top_k=top_k, score_floor=score_floor),
    )

    hits = 0
    reciprocal_ranks: list[float] = []
    latencies: list[float] = []
    details: list[dict] = []

    for query in queries:
        start = time.perf_counter()
        result = service.answer(query.question, session_id="evaluation")
        latency_ms = (time.perf_counter() - start) * 1000
        latencies.append(latency_ms)
        retrieved_ids = [url_lookup.get(citation.url) for citation in result.citations]
        retrieved_ids = [doc_id for doc_id in retrieved_ids if doc_id]
        relevant_set = set(query.relevant_document_ids)
        rank = None
        for position, doc_id in enumerate(retrieved_ids, start=1):
            if doc_id in relevant_set:
                rank = position
                break
        if rank is not None:
            hits += 1
            reciprocal_ranks.append(1 / rank)
        else:
            reciprocal_ranks.append(0.0)
        details.append(
            {
                "question": query.question,
                "retrieved": retrieved_ids,
                "relevant": list(query.relevant_document_ids),
                "latency_ms": latency_ms,
                "answer": result.text,
            },
        )

    total = len(queries)
    recall = hits / total if total else 0.0
    mrr = statistics.fmean(reciprocal_ranks) if reciprocal_ranks else 0.0
    avg_latency = statistics.fmean(latencies) if latencies else 0.0
    result = EvaluationResult(
        total_queries=total,
        hits=hits,
        recall_at_k=recall,
        mean_reciprocal_rank=mrr,
        average_latency_ms=avg_latency,
        details=details,
    )

    if json_out:
        json_out.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    if markdown_out:
        markdown_out.write_text(_format_markdown(result), encoding="utf-8")
    return result


def _format_markdown(result: EvaluationResult) -> str:
    lines = [
        "# NewsRAG Evaluation Report",
        "",
        f"- Total queries: {result.total_queries}",
        f"- Hits: {result.hits}",
        f"- Recall@k: {result.recall_at_k:.2f}",
        f"- MRR: {result.mean_reciprocal_rank:.2f}",
        f"- Avg latency (ms): {result.average_latency_ms:.2f}",
        "",
        "| Question | Retrieved | Relevant |",
        "| --- | --- | --- |",
    ]
    for item in result.details:
        retrieved = ", ".join(item["retrieved"]) if item["retrieved"] else "-"
        relevant = ", ".join(item["relevant"]) if item["relevant"] else "-"
        lines.append(f"| {item['question']} | {retrieved} | {relevant} |")
    return "\n".join(lines)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate NewsRAG retrieval accuracy.")
    parser.add_argument(
        "--dataset",
        type=Path,
        default=Path("evaluations/fixtures/news_sample.json"),
        help="Path to evaluation dataset JSON file.",
    )
    parser.add_argument("--top-k", type=int, default=3, help="Number of articles retrieved per query")
    parser.add_argument("--score-floor", type=float, default=0.0, help="Minimum similarity for a retrieved article")
    parser.add_argument("--json-out", type=Path, default=None, help="Optional path to write JSON report")
    parser.add_argument("--markdown-out", type=Path, default=None, help="Optional path to write Markdown report")
    parser.add_argument("--min-recall", type=float, default=None, help="Override recall threshold")
    parser.add_argument("--min-mrr", type=float, default=None, help="Override MRR threshold")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    settings = get_settings()
    min_recall = args.min_recall if args.min_recall is not None else settings.evaluation_min_recall
    min_mrr = args.min_mrr if args.min_mrr is not None else settings.evaluation_min_mrr

    result = run_evaluation(
        args.dataset,
        top_k=args.top_k,
        score_floor=args.score_floor,
        settings=settings,
        json_out=args.json_out,
        markdown_out=args.markdown_out,
    )
    print(json.dumps(result.to_dict(), indent=2))

    if result.recall_at_k < min_recall or result.mean_reciprocal_rank < min_mrr:
        print(
            f"Evaluation failed thresholds (recall {result.recall_at_k:.2f} vs {min_recall}, "
            f"MRR {result.mean_reciprocal_rank:.2f} vs {min_mrr})",
            file=sys.stderr,
        )
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
