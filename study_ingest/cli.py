"""
Command line entry point.

    study-ingest ingest dataset/src/biology.pdf
    study-ingest ask <document_id> "What is osmosis?"
    study-ingest reindex <document_id>
    study-ingest delete <document_id>
    study-ingest show <document_id>
    study-ingest list
"""
import argparse
import json
import sys
from typing import List, Optional

from .config import Settings
from .context import open_context
from .errors import StudyIngestError
from .log import configure_logging, get_logger
from .models import DocumentStatus
from .pipeline import PipelineOrchestrator
from .retrieval import RetrievalService

logger = get_logger(__name__)


def _print_report(report) -> None:
    print("\n" + "=" * 60)
    print("Processing Summary:")
    print(f"  Document: {report.document_id}")
    print(f"  Status: {report.status.value}")
    print(f"  Chapters: {report.chapters}")
    print(f"  Chunks: {report.chunks}")
    print(f"  Vectors indexed: {report.vectors_indexed}")
    if report.embedding_failures:
        print(f"  Embedding failures: {report.embedding_failures}")
    if report.degraded_stages:
        print(f"  Degraded: {', '.join(report.degraded_stages)}")
    if report.error:
        print(f"  Error: {report.error}")
    print("=" * 60)


def cmd_ingest(ctx, args) -> int:
    orchestrator = PipelineOrchestrator.from_context(ctx)
    document_ids = []
    for file_path in args.files:
        document = orchestrator.register_document(file_path, mime_type=args.mime, title=args.title)
        print(f"Registered {document.document_id} ({document.title})")
        document_ids.append(document.document_id)

    if len(document_ids) == 1:
        results = [orchestrator.process_document(document_ids[0])]
    else:
        results = orchestrator.process_documents(document_ids)
    for report in results:
        _print_report(report)
    return 0 if all(r.status == DocumentStatus.READY for r in results) else 1


def cmd_ask(ctx, args) -> int:
    service = RetrievalService(
        embedding_client=ctx.embedding_client,
        vector_store=ctx.vector_store,
        record_store=ctx.record_store,
        cache=ctx.cache,
        assistant=ctx.assistant,
        top_k=args.top_k or ctx.settings.top_k,
        max_question_length=ctx.settings.max_question_length,
    )
    result = service.answer_question(args.document_id, args.question)
    print(result.answer)
    if result.relevant_pages:
        print(f"\nPages: {', '.join(str(p) for p in result.relevant_pages)}")
    for i, chunk in enumerate(result.chunks, 1):
        print(f"  {i}. {chunk.chunk_id} (page {chunk.page_number}, score {chunk.score:.4f})")
    return 0


def cmd_reindex(ctx, args) -> int:
    orchestrator = PipelineOrchestrator.from_context(ctx)
    if args.full:
        _print_report(orchestrator.reprocess_document(args.document_id))
    else:
        written = orchestrator.rebuild_vectors(args.document_id)
        print(f"Rebuilt {written} vectors for {args.document_id}")
    return 0


def cmd_delete(ctx, args) -> int:
    PipelineOrchestrator.from_context(ctx).delete_document(args.document_id)
    print(f"Deleted {args.document_id}")
    return 0


def cmd_show(ctx, args) -> int:
    store = ctx.record_store
    document = store.get_document(args.document_id)
    payload = {
        "document": document.to_dict(),
        "chapters": [c.to_dict() for c in store.list_chapters(args.document_id)],
        "concepts": [c.to_dict() for c in store.list_concepts(args.document_id)],
        "chunks": len(store.list_chunks(args.document_id)),
        "index": ctx.vector_store.stats(),
    }
    print(json.dumps(payload, indent=2))
    return 0


def cmd_list(ctx, args) -> int:
    for document in ctx.record_store.list_documents():
        print(f"{document.document_id}  {document.status.value:10}  {document.title}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="study-ingest", description="Study material ingestion and Q&A")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Register and process files")
    ingest.add_argument("files", nargs="+")
    ingest.add_argument("--mime", default=None, help="MIME type, guessed from the extension otherwise")
    ingest.add_argument("--title", default=None)
    ingest.set_defaults(func=cmd_ingest)

    ask = sub.add_parser("ask", help="Ask a question about a document")
    ask.add_argument("document_id")
    ask.add_argument("question")
    ask.add_argument("--top-k", type=int, default=None)
    ask.set_defaults(func=cmd_ask)

    reindex = sub.add_parser("reindex", help="Rebuild a document's vectors from its chunks")
    reindex.add_argument("document_id")
    reindex.add_argument("--full", action="store_true", help="Re-run the whole pipeline")
    reindex.set_defaults(func=cmd_reindex)

    delete = sub.add_parser("delete", help="Delete a document and its vectors")
    delete.add_argument("document_id")
    delete.set_defaults(func=cmd_delete)

    show = sub.add_parser("show", help="Print a document's records")
    show.add_argument("document_id")
    show.set_defaults(func=cmd_show)

    listing = sub.add_parser("list", help="List documents")
    listing.set_defaults(func=cmd_list)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
    except StudyIngestError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(args.log_level or settings.log_level, json_output=settings.json_logs)

    with open_context(settings) as ctx:
        try:
            return args.func(ctx, args)
        except (StudyIngestError, OSError) as e:
            logger.error("command_failed", command=args.command, error=str(e))
            print(f"Error: {e}", file=sys.stderr)
            return 1
