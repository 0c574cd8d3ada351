from recommender.jobs.enrich import EnrichmentJob, EnrichmentReport, MediaItem
from recommender.jobs.runner import JobOutcome, JobResult, JobRunner, JobsConfig

__all__ = [
    "EnrichmentJob",
    "EnrichmentReport",
    "JobOutcome",
    "JobResult",
    "JobRunner",
    "JobsConfig",
    "MediaItem",
]
