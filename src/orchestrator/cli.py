"""
Memory CLI
==========

Command-line interface for the memory subsystem.

Commands:
    index       - Index a note or file
    search      - Search Warm chunks and Cold summaries
    route       - Show how a query would be handled
    hot         - Print the Hot memory block
    consolidate - Run, preview or commit Cold tier consolidation
    reindex     - Retry failed and unprocessed documents
    stats       - Show index statistics

Usage:
    python -m src.orchestrator.cli index --file notes/lisbon.md --type note
    python -m src.orchestrator.cli search "lisbon restaurants" --top-k 3
    python -m src.orchestrator.cli route "what's the weather in Atlanta"
    python -m src.orchestrator.cli consolidate --plan
    python -m src.orchestrator.cli consolidate --commit <token>
"""

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from src.knowledge.config import get_settings
from src.knowledge.errors import KnowledgeError, StalePlanError
from src.knowledge.models import DocType, Document, TierScope
from src.memory.service import MemoryService

from .logging_config import setup_logging_from_config

logger = logging.getLogger(__name__)


def cmd_index(args, service: MemoryService) -> int:
    """Index a document from a file or inline text."""
    if args.file:
        path = Path(args.file)
        content = path.read_text(encoding="utf-8")
        title = args.title or path.stem
    else:
        content = args.text or ""
        title = args.title or "Untitled"

    document = Document(
        id=args.id or f"doc_{uuid.uuid4().hex[:12]}",
        doc_type=DocType(args.type),
        title=title,
        content=content,
    )
    result = service.index_document(document)

    print(f"Document: {result.document_id}")
    print(f"Status:   {result.status.value}")
    print(f"Chunks:   {result.chunk_count}")
    if result.error:
        print(f"Error:    {result.error}")
    return 0 if result.ok else 1


def cmd_search(args, service: MemoryService) -> int:
    """Search memory."""
    results = service.search(
        args.query,
        top_k=args.top_k,
        min_score=args.min_score,
        tier_scope=TierScope(args.scope),
    )

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0

    if not results:
        print("No results.")
        return 0

    for i, r in enumerate(results, 1):
        print(f"{i}. [{r.score:.3f}] ({r.tier.value}/{r.match_type.value}) {r.document_title or r.chunk_id}")
        preview = " ".join(r.content.split())
        print(f"   {preview[:160]}{'...' if len(preview) > 160 else ''}")
    return 0


def cmd_route(args, service: MemoryService) -> int:
    """Show pre-route and retrieval plan for a query."""
    pre_route = service.check_trivial(args.query)
    if pre_route.handled:
        print(f"Trivial ({pre_route.category}): {pre_route.answer}")
        return 0

    plan = service.route(args.query)
    print(f"Mode:   {plan.mode.value}")
    print(f"Scope:  {plan.tier_scope.value}")
    print(f"Reason: {plan.reason}")

    if args.context:
        answer = service.answer_context(args.query)
        print()
        print(json.dumps(answer.to_dict(), indent=2, default=str))
    return 0


def cmd_hot(args, service: MemoryService) -> int:
    """Print Hot memory."""
    print(service.build_hot_memory())
    return 0


def cmd_consolidate(args, service: MemoryService) -> int:
    """Run, preview or commit consolidation."""
    if args.plan:
        plan = service.plan_consolidation()
        print(json.dumps(plan.to_dict(), indent=2))
        return 0

    try:
        if args.commit:
            result = service.commit_consolidation(args.commit)
        else:
            result = service.run_consolidation()
    except StalePlanError as e:
        print(f"ERROR: {e}")
        return 2

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.status in ("completed", "skipped") else 1


def cmd_reindex(args, service: MemoryService) -> int:
    """Retry failed and unprocessed documents."""
    results = service.reindex_pending()
    failed = [r for r in results if not r.ok]
    print(f"Reindexed {len(results)} documents, {len(failed)} failed")
    for r in failed:
        print(f"  ✗ {r.document_id}: {r.error}")
    return 1 if failed else 0


def cmd_stats(args, service: MemoryService) -> int:
    """Show statistics."""
    print(json.dumps(service.stats(), indent=2, default=str))
    return 0


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memory",
        description="Personal Memory CLI",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    index_parser = subparsers.add_parser("index", help="Index a note or file")
    source = index_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="Path to a text or markdown file")
    source.add_argument("--text", help="Inline text")
    index_parser.add_argument("--id", help="Document id (generated if omitted)")
    index_parser.add_argument("--title", help="Document title")
    index_parser.add_argument(
        "--type",
        choices=[t.value for t in DocType],
        default=DocType.NOTE.value,
        help="Document type (default: note)",
    )

    search_parser = subparsers.add_parser("search", help="Search memory")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--top-k", type=positive_int, default=None, help="Number of results")
    search_parser.add_argument("--min-score", type=float, default=None, help="Similarity threshold (0-1)")
    search_parser.add_argument(
        "--scope",
        choices=[s.value for s in TierScope],
        default=TierScope.ALL.value,
        help="Tiers to search (default: all)",
    )
    search_parser.add_argument("--json", action="store_true", help="Output as JSON")

    route_parser = subparsers.add_parser("route", help="Show how a query would be handled")
    route_parser.add_argument("query", help="User query")
    route_parser.add_argument("--context", action="store_true", help="Also assemble the full context")

    subparsers.add_parser("hot", help="Print Hot memory")

    consolidate_parser = subparsers.add_parser("consolidate", help="Cold tier consolidation")
    mode = consolidate_parser.add_mutually_exclusive_group()
    mode.add_argument("--plan", action="store_true", help="Preview without archiving")
    mode.add_argument("--commit", metavar="TOKEN", help="Run only if the plan still matches TOKEN")

    subparsers.add_parser("reindex", help="Retry failed and unprocessed documents")
    subparsers.add_parser("stats", help="Show statistics")

    return parser


COMMANDS = {
    "index": cmd_index,
    "search": cmd_search,
    "route": cmd_route,
    "hot": cmd_hot,
    "consolidate": cmd_consolidate,
    "reindex": cmd_reindex,
    "stats": cmd_stats,
}


def main(argv: Optional[List[str]] = None, service: Optional[MemoryService] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    settings = get_settings()
    setup_logging_from_config(settings.logging, verbose=args.verbose)

    owns_service = service is None
    if owns_service:
        service = MemoryService.from_settings(settings)

    try:
        return COMMANDS[args.command](args, service)
    except KnowledgeError as e:
        print(f"ERROR: {e}")
        logger.exception(f"Command {args.command} failed")
        return 1
    finally:
        if owns_service:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
