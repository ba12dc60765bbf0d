"""Grow, certify and score keyword demand for one or more categories."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from demand_sweep.config import settings
from demand_sweep.core.database import create_engine, create_session_maker, init_db
from demand_sweep.core.exceptions import ConfigurationError
from demand_sweep.core.logging import setup_logging
from demand_sweep.core.redis import close_redis
from demand_sweep.schemas.category import SweepCatalog, load_catalog
from demand_sweep.schemas.metrics import CalibrationPolicyName
from demand_sweep.services.batch_runner import BatchRunner
from demand_sweep.services.category_pipeline import CategorySweepResult, build_category_pipeline
from demand_sweep.services.corpus_store import CorpusStore, InMemoryCorpusStore, SqlCorpusStore
from demand_sweep.services.job_store import SweepJobStore
from demand_sweep.services.volume_cache import KeywordVolumeCache

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(description=__doc__)
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--category",
        action="append",
        dest="categories",
        help="Category id to sweep (repeatable)",
    )
    target.add_argument(
        "--all",
        action="store_true",
        help="Sweep every category in the catalog",
    )
    parser.add_argument(
        "--catalog",
        default=settings.category_catalog_path,
        help="Path to the category catalog YAML",
    )
    parser.add_argument(
        "--trend",
        action="append",
        default=[],
        metavar="CATEGORY=PERCENT",
        help="Five-year trend percent for a category (default: catalog benchmark)",
    )
    parser.add_argument(
        "--calibration",
        choices=["none", "blend", "override"],
        default=None,
        help="Benchmark calibration policy (default: from settings)",
    )
    parser.add_argument(
        "--alpha",
        type=float,
        default=None,
        help="Weight of raw values in blend calibration",
    )
    parser.add_argument(
        "--allow-downgrade",
        action="store_true",
        help="Downgrade certified snapshots instead of refusing to grow them",
    )
    parser.add_argument(
        "--store",
        choices=["memory", "database"],
        default="memory",
        help="Corpus store backend (default: memory)",
    )
    parser.add_argument(
        "--no-volume-cache",
        dest="volume_cache",
        action="store_false",
        default=settings.volume_cache_enabled,
        help="Always ask DataForSEO instead of reusing cached keyword volumes",
    )
    parser.add_argument(
        "--job-id",
        default=None,
        help="Record per-category progress in Redis under this job id",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write results JSON to this path instead of stdout",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def parse_trends(values: Sequence[str]) -> dict[str, float]:
    """Parse ``CATEGORY=PERCENT`` pairs."""
    trends: dict[str, float] = {}
    for value in values:
        category_id, sep, percent = value.partition("=")
        if not sep or not category_id.strip():
            raise ValueError(f"Invalid trend '{value}', expected CATEGORY=PERCENT")
        try:
            trends[category_id.strip()] = float(percent)
        except ValueError as exc:
            raise ValueError(f"Invalid trend percent in '{value}'") from exc
    return trends


def resolve_trends(catalog: SweepCatalog, category_ids: Sequence[str], overrides: dict[str, float]) -> dict[str, float]:
    """Explicit trends win; otherwise fall back to the catalog benchmark."""
    trends: dict[str, float] = {}
    for category_id in category_ids:
        if category_id in overrides:
            trends[category_id] = overrides[category_id]
            continue
        category = catalog.categories.get(category_id)
        if category is not None and category.benchmark is not None and category.benchmark.trend_5y_pct is not None:
            trends[category_id] = category.benchmark.trend_5y_pct
    return trends


def build_runner(
    catalog: SweepCatalog,
    store: CorpusStore,
    *,
    calibration: CalibrationPolicyName | None = None,
    alpha: float | None = None,
    job_store: SweepJobStore | None = None,
    volume_cache: KeywordVolumeCache | None = None,
) -> BatchRunner:
    pipeline = build_category_pipeline(
        catalog,
        store,
        volume_cache=volume_cache,
        calibration_policy=calibration,
        calibration_alpha=alpha,
    )
    return BatchRunner(pipeline, catalog.categories, job_store=job_store)


def write_results(results: list[CategorySweepResult], output: str | None) -> None:
    payload = json.dumps([result.to_dict() for result in results], indent=2, default=str)
    if output is None:
        print(payload)
        return
    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(payload + "\n", encoding="utf-8")


def install_stop_handlers(runner: BatchRunner) -> None:
    """Turn SIGINT/SIGTERM into cooperative stops for every category."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, runner.stop_all, f"received {sig.name}")


async def async_main(argv: Sequence[str] | None = None) -> int:
    """Async entrypoint."""
    args = parse_args(argv)
    setup_logging(debug=args.debug or settings.debug)

    try:
        catalog = load_catalog(args.catalog)
        overrides = parse_trends(args.trend)
    except (ConfigurationError, ValueError) as exc:
        print(f"Failed to prepare sweep: {exc}", file=sys.stderr)
        return 1

    category_ids = sorted(catalog.categories) if args.all else list(dict.fromkeys(args.categories))
    trends = resolve_trends(catalog, category_ids, overrides)

    engine = None
    if args.store == "database":
        engine = create_engine()
        await init_db(engine)
        store: CorpusStore = SqlCorpusStore(create_session_maker(engine))
    else:
        store = InMemoryCorpusStore()

    job_store = SweepJobStore() if args.job_id else None
    volume_cache = KeywordVolumeCache() if args.volume_cache else None
    runner = build_runner(
        catalog,
        store,
        calibration=args.calibration,
        alpha=args.alpha,
        job_store=job_store,
        volume_cache=volume_cache,
    )
    install_stop_handlers(runner)

    try:
        results = await runner.run(
            category_ids,
            job_id=args.job_id,
            trends=trends,
            allow_downgrade=args.allow_downgrade,
        )
    finally:
        if job_store is not None or volume_cache is not None:
            await close_redis()
        if engine is not None:
            await engine.dispose()

    write_results(results, args.output)
    summary: dict[str, Any] = {result.category_id: result.status for result in results}
    print(f"Demand sweep finished: {summary}", file=sys.stderr)
    return 1 if any(result.status == "failed" for result in results) else 0


def main() -> int:
    """Sync wrapper."""
    load_dotenv()
    return asyncio.run(async_main())


if __name__ == "__main__":
    raise SystemExit(main())
