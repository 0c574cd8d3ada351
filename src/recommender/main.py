from __future__ import annotations

import argparse
from pathlib import Path

from dotenv import load_dotenv

from recommender.catalog.tmdb import CatalogClient, CatalogConfig
from recommender.common.clock import CancelToken, OperationCancelledError
from recommender.common.logging import setup_logging
from recommender.common.settings import compute_config_hash, load_settings
from recommender.jobs.enrich import EnrichmentJob, load_items
from recommender.jobs.runner import JobOutcome, JobRunner, JobsConfig
from recommender.locking.file_lock import FileLock, LockConfig, LockError
from recommender.storage.cache import ExpiringCache

EXIT_OK = 0
EXIT_LOCK_FAILURE = 2
EXIT_CANCELLED = 3


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recommender background jobs")
    parser.add_argument(
        "--config",
        required=True,
        help="Path to config/settings.yaml",
    )
    parser.add_argument(
        "--schema",
        default="config/schema.json",
        help="Path to the settings JSON schema",
    )
    parser.add_argument(
        "--job",
        required=True,
        choices=["enrich"],
        help="Job to run",
    )
    parser.add_argument(
        "--items",
        required=True,
        help="YAML/JSON list of library items ({title, year, kind})",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    load_dotenv()
    settings = load_settings(Path(args.config), Path(args.schema))
    logger = setup_logging(settings.app_log_path, settings.log_level)
    logger.info(
        "boot_start",
        extra={
            "environment": settings.environment,
            "config_hash": compute_config_hash(settings.config_path),
        },
    )

    catalog_config = CatalogConfig.from_settings(settings.raw)
    lock_config = LockConfig.from_settings(settings.raw)
    jobs_config = JobsConfig.from_settings(settings.raw)
    items = load_items(Path(args.items))

    cache = ExpiringCache(
        catalog_config.cache.ttl_seconds,
        sweep_interval=catalog_config.cache.sweep_interval_seconds,
        logger=logger,
    )
    catalog = CatalogClient(catalog_config, cache=cache, logger=logger)
    lock = FileLock(lock_config.directory, logger=logger)
    runner = JobRunner(lock, lock_config.timeout_seconds, logger=logger)
    job = EnrichmentJob(catalog, workers=jobs_config.enrich_workers, logger=logger)
    cancel = CancelToken.with_timeout(jobs_config.job_timeout_seconds)

    cache.start()
    try:
        result = runner.run(args.job, lambda: job.run(items, cancel=cancel), cancel)
    except LockError as exc:
        logger.error("lock_infrastructure_failure", extra={"error": str(exc)})
        return EXIT_LOCK_FAILURE
    except OperationCancelledError as exc:
        logger.warning("job_cancelled", extra={"job": args.job, "reason": str(exc)})
        return EXIT_CANCELLED
    finally:
        cache.close()
        catalog.close()
        lock.close()

    if result.outcome is JobOutcome.ALREADY_RUNNING:
        print(result.message)
        return EXIT_OK
    summary = result.value.summary()
    print(f"{result.message}: " + " ".join(f"{k}={v}" for k, v in summary.items()))
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
