"""Command line entry point for index maintenance and ad-hoc searches.

Entity declarations are loaded from ``RECORD_SEARCH_DECLARATIONS`` (or
``--declarations``), given as ``module:attribute``. The attribute is a list of
``EntityDeclaration`` objects or a callable returning one. When the module also
defines ``configure_record_store(store)``, it is called with the record store so
relations used for eager loading can be registered.

Exit codes: 0 on success, 1 when jobs failed or a fatal error occurred, 2 on
configuration errors.
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence
import importlib
import logging
from pathlib import Path
import sys
from typing import Any

import orjson
from pydantic import ValidationError

from record_search.adapters.record_store import SqliteRecordStore
from record_search.config import Settings
from record_search.context import IndexContext
from record_search.domain.model import JobAction
from record_search.errors import ConfigurationError, RecordSearchError
from record_search.observability.logging import configure_logging
from record_search.observability.metrics import get_metrics, init_metrics
from record_search.observability.tracing import init_tracing
from record_search.registry import EntityDeclaration, Registry
from record_search.service_layer.indexer import IncrementalIndexer
from record_search.service_layer.job_queue import JobQueue
from record_search.service_layer.rebuilder import Rebuilder
from record_search.service_layer.search_service import QueryEngine


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="record-search",
        description="Keep the record search index in sync and query it",
    )
    parser.add_argument(
        "--declarations",
        help="'module:attribute' naming the entity declarations (default: RECORD_SEARCH_DECLARATIONS)",
    )
    parser.add_argument(
        "--index-path",
        type=Path,
        help="Index directory (default: RECORD_SEARCH_INDEX_PATH or base_index_dir/environment)",
    )
    parser.add_argument(
        "--database",
        type=Path,
        help="SQLite database with records and index jobs (default: RECORD_SEARCH_DATABASE_PATH)",
    )
    parser.add_argument(
        "--metrics-textfile",
        type=Path,
        help="Write Prometheus metrics to this file when the command finishes",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update-index", help="Apply queued index jobs")
    update.add_argument("--flush", action="store_true", help="Commit the index after every job")
    update.add_argument("--verbose", action="store_true", help="Log every job")

    rebuild = subparsers.add_parser("rebuild-index", help="Rebuild the whole index from the record store")
    rebuild.add_argument("entity_types", nargs="+", metavar="TYPE", help="Entity types to include")
    rebuild.add_argument("--verbose", action="store_true", help="Log progress per batch")

    search = subparsers.add_parser("search", help="Run a query and print the ranked results as JSON lines")
    search.add_argument("entity_types", metavar="TYPES", help="Comma-separated entity types")
    search.add_argument("query", metavar="QUERY", help="Query string")
    search.add_argument("--offset", type=int, default=0)
    search.add_argument("--limit", type=int, default=10, help="Maximum results; -1 for no limit")
    search.add_argument("--sort-by", help="Value name to sort by instead of relevance")
    search.add_argument("--descending", action="store_true", help="Sort by value in descending order")
    search.add_argument("--collapse-by", help="Value name to collapse results on")

    enqueue = subparsers.add_parser("enqueue", help="Queue an index job by hand")
    enqueue.add_argument("entity_type", metavar="TYPE")
    enqueue.add_argument("entity_id", metavar="ID")
    enqueue.add_argument("action", choices=[action.value for action in JobAction])

    discard = subparsers.add_parser("discard-job", help="Drop a queued job without processing it")
    discard.add_argument("job_id", type=int, metavar="ID")
    return parser


def load_declarations(target: str) -> tuple[list[EntityDeclaration], Any]:
    """Resolve ``module:attribute`` to entity declarations; returns them with their module."""
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Declarations must be given as 'module:attribute', got '{target}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import declarations module '{module_name}': {exc}") from exc
    try:
        declarations = getattr(module, attribute)
    except AttributeError:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attribute}'") from None
    if callable(declarations):
        declarations = declarations()
    return list(declarations), module


def _settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.declarations:
        overrides["declarations"] = args.declarations
    if args.index_path:
        overrides["index_path"] = args.index_path
    if args.database:
        overrides["database_path"] = args.database
    return Settings(**overrides)


def _print_json(payload: dict[str, Any]) -> None:
    sys.stdout.write(orjson.dumps(payload, default=str).decode("utf-8") + "\n")


def _run(args: argparse.Namespace, settings: Settings) -> int:
    queue = JobQueue(settings.database_path)

    if args.command == "enqueue":
        job_id = queue.enqueue(args.entity_type, args.entity_id, args.action)
        logger.info("Queued job %d: %s %s-%s", job_id, args.action, args.entity_type, args.entity_id)
        return EXIT_OK
    if args.command == "discard-job":
        if not queue.discard(args.job_id):
            logger.error("No queued index job %d", args.job_id)
            return EXIT_FAILURE
        return EXIT_OK

    if not settings.declarations:
        raise ConfigurationError("No entity declarations configured; set RECORD_SEARCH_DECLARATIONS")
    declarations, module = load_declarations(settings.declarations)
    registry = Registry(declarations)
    store = SqliteRecordStore(settings.database_path, queue=queue)
    configure_store = getattr(module, "configure_record_store", None)
    if callable(configure_store):
        configure_store(store)

    with IndexContext(registry, settings.resolved_index_path()) as context:
        if args.command == "update-index":
            report = IncrementalIndexer(context, queue, store).update_index(
                flush_each_job=args.flush or settings.flush_each_job,
                verbose=args.verbose,
            )
            for failure in report.failures:
                logger.error("%s", failure.error)
            return EXIT_OK if report.ok else EXIT_FAILURE

        if args.command == "rebuild-index":
            rebuilder = Rebuilder(context, queue, store, batch_size=settings.rebuild_batch_size)
            rebuilder.rebuild_index(args.entity_types, verbose=args.verbose)
            return EXIT_OK

        if args.command == "search":
            engine = QueryEngine(context, store, lookahead=settings.query_lookahead)
            search = engine.search(
                [name.strip() for name in args.entity_types.split(",") if name.strip()],
                args.query,
                offset=args.offset,
                limit=args.limit,
                sort_by=args.sort_by,
                sort_ascending=not args.descending,
                collapse_by=args.collapse_by,
            )
            _print_json(
                {
                    "description": search.description,
                    "matches_estimated": search.matches_estimated,
                    "spelling_correction": search.spelling_correction,
                    "runtime": round(search.runtime, 6),
                }
            )
            for result in search.results:
                _print_json(result.model_dump())
            return EXIT_OK

    raise ConfigurationError(f"Unknown command '{args.command}'")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    try:
        settings = _settings(args)
    except ValidationError as exc:
        configure_logging("info", json_output=False)
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    configure_logging(settings.log_level, json_output=settings.log_json)
    init_tracing(resource_attributes={"deployment.environment": settings.environment})
    init_metrics(resource_attributes={"deployment.environment": settings.environment})

    try:
        exit_code = _run(args, settings)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        exit_code = EXIT_CONFIG_ERROR
    except ValidationError as exc:
        logger.error("Invalid arguments: %s", exc)
        exit_code = EXIT_CONFIG_ERROR
    except RecordSearchError as exc:
        logger.error("%s", exc)
        exit_code = EXIT_FAILURE

    if args.metrics_textfile:
        args.metrics_textfile.parent.mkdir(parents=True, exist_ok=True)
        args.metrics_textfile.write_bytes(get_metrics())
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
