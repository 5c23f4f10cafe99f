#!/usr/bin/env python3
"""Run vehicle-document photos through the vision pipeline."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from docvision.core.config import PipelineConfig, load_config
from docvision.core.errors import ConfigError, PipelineFailure
from docvision.core.store import MemoryStore, SqliteStore
from docvision.cost.model import RunningTotalSink
from docvision.documents.models import CostBudget, DocumentType
from docvision.pipeline import ProcessingResult, VisionPipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("process_image")

DEFAULT_CONFIG = PROJECT_ROOT / "config" / "pipeline.yaml"


# ── Runner ───────────────────────────────────────────────────────────


def run(
    images: list[str],
    document_type: str,
    budget: str,
    config_path: str | None = None,
    cache_db: str | None = None,
    hints: dict[str, str] | None = None,
) -> int:
    """Process each image, print JSON per result, return the exit code."""
    config = _load(config_path)
    if cache_db:
        store = SqliteStore(cache_db)
        purged = store.purge_expired()
        if purged:
            logger.info("Purged %d expired cache entries from %s", purged, cache_db)
    else:
        store = MemoryStore(config.cache.max_entries)
    sink = RunningTotalSink()
    pipeline = VisionPipeline(config=config, store=store, sink=sink)
    logger.info("Config hash: %s", config.config_hash()[:12])

    failures = 0
    t_start = time.time()
    try:
        for image_path in images:
            path = Path(image_path)
            try:
                image_bytes = path.read_bytes()
            except OSError as exc:
                logger.error("Cannot read %s: %s", path, exc)
                failures += 1
                continue

            try:
                result = pipeline.process_image(image_bytes, document_type, budget, hints)
            except PipelineFailure as exc:
                logger.error("%s failed after %d attempts: %s", path.name, exc.attempt_count, exc.message)
                print(json.dumps({"image": str(path), "error": type(exc).__name__, "message": exc.message}))
                failures += 1
                continue

            print(json.dumps(_to_json(path, result), indent=2))
    finally:
        if isinstance(store, SqliteStore):
            store.close()

    elapsed = time.time() - t_start
    logger.info("=" * 60)
    logger.info(
        "Processed %d image(s) in %.1fs: %d failed, total cost $%.4f",
        len(images), elapsed, failures, sink.total,
    )
    logger.info("Cache: %s", json.dumps(pipeline.cache.stats()))
    return 1 if failures else 0


def _load(config_path: str | None) -> PipelineConfig:
    if config_path:
        return load_config(config_path)
    if DEFAULT_CONFIG.is_file():
        return load_config(DEFAULT_CONFIG)
    return PipelineConfig()


def _to_json(path: Path, result: ProcessingResult) -> dict:
    return {
        "image": str(path),
        "summary": result.record.summary(),
        "record": result.record.model_dump(mode="json", exclude={"raw_text"}),
        "confidence": result.validation.confidence,
        "status": result.validation.status,
        "issues": [i.model_dump(mode="json") for i in result.validation.issues],
        "model": result.model,
        "attempts": result.attempt_count,
        "cost": result.cost.model_dump(mode="json"),
    }


def _parse_hints(pairs: list[str]) -> dict[str, str]:
    hints: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"Hint must be key=value, got '{pair}'")
        hints[key.strip()] = value.strip()
    return hints


# ── CLI ──────────────────────────────────────────────────────────────


def main():
    parser = argparse.ArgumentParser(description="Extract structured data from vehicle document photos")
    parser.add_argument("images", nargs="+", help="Image file(s) to process")
    parser.add_argument(
        "--type",
        dest="document_type",
        choices=[t.value for t in DocumentType],
        default=DocumentType.UNKNOWN.value,
        help="Document type shown in the photo",
    )
    parser.add_argument(
        "--budget",
        choices=[b.value for b in CostBudget],
        default=CostBudget.MEDIUM.value,
        help="Cost budget tier",
    )
    parser.add_argument("--config", default=None, help="Path to pipeline config YAML")
    parser.add_argument("--cache-db", default=None, help="SQLite cache path (default: in-memory)")
    parser.add_argument(
        "--hint",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Context passed to the model, e.g. --hint unit=km (repeatable)",
    )
    args = parser.parse_args()

    try:
        hints = _parse_hints(args.hint)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))

    try:
        code = run(args.images, args.document_type, args.budget, args.config, args.cache_db, hints)
    except ConfigError as exc:
        logger.error("%s", exc.message)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
