"""
Dowser harvest pipeline package.
"""

from dowser_engine.pipeline.harvest import HarvestReport, JobHarvest, harvest_job, run_harvest
from dowser_engine.pipeline.worker_pool import BoundedWorkerPool, RunEnricher, enrich_runs

__all__ = [
    "BoundedWorkerPool",
    "HarvestReport",
    "JobHarvest",
    "RunEnricher",
    "enrich_runs",
    "harvest_job",
    "run_harvest",
]
