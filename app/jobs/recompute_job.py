"""
Simulated autonomy recomputation.

No real computation happens here. The result has a fixed shape and its
accuracy is drawn from a generator seeded by the job id, so repeated
calls for the same job agree. The 0.8-1.0 range is a placeholder, not a contract.
"""

import logging
import random

from app.config import config
from app.models.jobs import Job

logger = logging.getLogger(__name__)


def run_recompute(job: Job) -> dict:
    rng = random.Random(job.id)
    iterations = job.parameters.get("iterations") or config.DEFAULT_ITERATIONS
    result = {
        "accuracy": round(rng.uniform(0.8, 1.0), 4),
        "iterations": iterations,
        "convergence": True,
    }
    logger.debug(f"Simulated recomputation for job {job.id} on dataset {job.dataset_id}: {result}")
    return result
