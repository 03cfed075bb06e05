"""
Requirements Hub — Main Entry Point

Compare a workbook against the stored corpus (nothing is stored):
    python -m requirements_hub compare path/to/file.xlsx --org "Region Syd"

Import a workbook and regroup the corpus:
    python -m requirements_hub import path/to/file.xlsx --org "Region Syd"

Regroup the whole corpus and print an assistant summary:
    python -m requirements_hub group

Corpus statistics, optionally over a filtered listing:
    python -m requirements_hub stats
    python -m requirements_hub stats --category Säkerhet --type Skall --new

Note: MOCK_MODE defaults to true, which keeps requirements in memory for
the lifetime of one command. Under mock mode `compare`, `group` and `stats`
start from an empty corpus; set MOCK_MODE=false and MONGODB_URI to work
against stored history.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime, timezone

from requirements_hub.config import Settings, get_settings
from requirements_hub.models.enums import RequirementType, UserStatus
from requirements_hub.models.schemas import CompareResult, ProgressEvent, RequirementFilter
from requirements_hub.persistence import get_repository
from requirements_hub.services import (
    AssistantService,
    CategoryNormalizer,
    GroupingEngine,
    ImportService,
    ProgressBus,
    run_grouping,
)
from requirements_hub.utils.logger import setup_logging

logger = logging.getLogger(__name__)


def _build_services():
    settings = get_settings()
    repository = get_repository(settings)
    normalizer = CategoryNormalizer(repository, settings=settings)
    engine = GroupingEngine(normalizer, settings=settings)
    importer = ImportService(repository, normalizer, grouping_engine=engine, settings=settings)
    assistant = AssistantService(settings=settings)
    return repository, engine, importer, assistant


def _warn_if_mock(settings: Settings, command: str) -> bool:
    if not settings.mock_mode:
        return False
    logger.warning(
        f"[CLI] MOCK_MODE is on: '{command}' runs against an empty in-memory corpus. "
        f"Set MOCK_MODE=false to use the MongoDB history."
    )
    return True


def _log_progress(event: ProgressEvent) -> None:
    step = f" [{event.step}/{event.total}]" if event.step is not None else ""
    logger.debug(f"  {event.type.value:<8}{step} {event.message}")


def _progress_for(run_id: str):
    """Log each event and publish it on the ProgressBus under *run_id*."""
    publish = ProgressBus.get().callback_for(run_id)

    def callback(event: ProgressEvent) -> None:
        _log_progress(event)
        publish(event)

    return callback


def compare(file_path: str, organization: str) -> list[CompareResult]:
    _warn_if_mock(get_settings(), "compare")
    _, _, importer, _ = _build_services()
    results = asyncio.run(importer.compare_file(file_path, organization))
    _print_compare_summary(results)
    return results


def import_file(file_path: str, organization: str, edits_path: str = "") -> dict:
    _, _, importer, _ = _build_services()
    edits = {}
    if edits_path:
        with open(edits_path, encoding="utf-8") as fh:
            edits = json.load(fh)
    summary = asyncio.run(importer.commit_file(file_path, organization, edits, progress=_log_progress))

    logger.info("-" * 60)
    logger.info(f"  Organization:   {summary.organization}")
    logger.info(f"  Requirements:   {summary.total_requirements}")
    logger.info(f"  New:            {summary.new_requirements}")
    logger.info(f"  Merged:         {summary.merged_requirements}")
    logger.info(f"  Edits applied:  {summary.edits_applied}")
    logger.info(f"  AI groups:      {summary.ai_groups_found}")
    logger.info("-" * 60)
    return summary.model_dump()


def group(run_id: str | None = None) -> dict:
    _warn_if_mock(get_settings(), "group")
    repository, engine, _, assistant = _build_services()
    run_id = run_id or f"grouping-{uuid.uuid4().hex[:12]}"
    logger.info(f"[CLI] Grouping run {run_id}")
    summary = asyncio.run(run_grouping(
        repository, engine, progress=_progress_for(run_id), assistant=assistant,
    ))
    logger.info(
        f"  Grouped {summary.processed_requirements} requirements into {summary.groups} groups "
        f"({summary.ungrouped} ungrouped, {len(summary.failed_group_writes)} failed writes)"
    )
    if summary.summary:
        logger.info(f"  Summary: {summary.summary}")
    return summary.model_dump()


def stats(filters: RequirementFilter | None = None) -> dict:
    _warn_if_mock(get_settings(), "stats")
    repository, _, _, _ = _build_services()
    statistics = repository.get_statistics()

    logger.info("-" * 60)
    logger.info(f"  Requirements:   {statistics.total_requirements}")
    logger.info(f"  Skall / Bör:    {statistics.must_requirements} / {statistics.should_requirements}")
    logger.info(f"  New:            {statistics.new_requirements}")
    logger.info(f"  Organizations:  {statistics.organizations}")
    logger.info(f"  Groups:         {statistics.groups}")
    for entry in statistics.categories[:10]:
        logger.info(f"    {entry.count:>5}  {entry.name}")
    logger.info("-" * 60)

    result = statistics.model_dump(mode="json")
    if filters is not None:
        matching = repository.get_all_requirements(filters)
        logger.info(f"  Matching filter: {len(matching)}")
        for req in matching[:20]:
            logger.info(f"    {req.id}  {req.text[:80]}")
        result["matching"] = len(matching)
    return result


def _filter_from_args(args: argparse.Namespace) -> RequirementFilter | None:
    filters = RequirementFilter(
        search=args.search,
        types=[RequirementType(t) for t in args.type],
        organizations=args.org,
        categories=args.category,
        dates=args.date,
        statuses=[UserStatus(s) for s in args.status],
        grouped_only=args.grouped,
        only_new=args.new,
    )
    # an all-default filter means no listing was asked for
    return None if filters == RequirementFilter() else filters


def _print_compare_summary(results: list[CompareResult]) -> None:
    identical = [r for r in results if r.is_identical]
    related = [r for r in results if not r.is_identical and r.ai_grouped_requirements]

    logger.info("-" * 60)
    logger.info("  COMPARISON RESULT SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Requirements:   {len(results)}")
    logger.info(f"  Identical:      {len(identical)}")
    logger.info(f"  Related groups: {len(related)}")
    logger.info(f"  New:            {len(results) - len(identical) - len(related)}")
    for result in results:
        marker = "=" if result.is_identical else ("~" if result.ai_grouped_requirements else "+")
        logger.info(f"    {marker} {result.key[:80]}")
    logger.info("-" * 60)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="requirements_hub", description="Procurement requirement import and grouping")
    sub = parser.add_subparsers(dest="command", required=True)

    p_compare = sub.add_parser("compare", help="Compare a workbook against stored requirements")
    p_compare.add_argument("file")
    p_compare.add_argument("--org", required=True, help="Organization that issued the workbook")

    p_import = sub.add_parser("import", help="Import a workbook and regroup the corpus")
    p_import.add_argument("file")
    p_import.add_argument("--org", required=True, help="Organization that issued the workbook")
    p_import.add_argument("--edits", default="", help="JSON file of {requirementKey: {comment, status}}")

    sub.add_parser("group", help="Regroup every stored requirement")

    p_stats = sub.add_parser("stats", help="Corpus statistics and a filtered listing")
    p_stats.add_argument("--search", default="", help="Case-insensitive text search")
    p_stats.add_argument("--type", action="append", default=[], choices=[t.value for t in RequirementType])
    p_stats.add_argument("--org", action="append", default=[])
    p_stats.add_argument("--category", action="append", default=[])
    p_stats.add_argument("--date", action="append", default=[])
    p_stats.add_argument("--status", action="append", default=[], choices=[s.value for s in UserStatus])
    p_stats.add_argument("--grouped", action="store_true", help="Only requirements in a group")
    p_stats.add_argument("--new", action="store_true", help="Only requirements flagged as new")

    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("=" * 60)
    logger.info(f"  {settings.app_name.upper()}")
    logger.info(f"  Command: {args.command} | Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    if args.command == "compare":
        compare(args.file, args.org)
    elif args.command == "import":
        import_file(args.file, args.org, args.edits)
    elif args.command == "stats":
        stats(_filter_from_args(args))
    else:
        group()
    return 0


if __name__ == "__main__":
    sys.exit(main())
