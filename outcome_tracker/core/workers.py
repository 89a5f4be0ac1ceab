"""Worker pools for batch scoring."""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

from sqlalchemy.orm import Session

from outcome_tracker.core.config import settings
from outcome_tracker.pipeline.vision import GeminiVisionReader, VisionScoreReader
from outcome_tracker.services.batch import BatchOrchestrator
from outcome_tracker.services.scoring import ScoringTask

logger = logging.getLogger(__name__)

# Global pool instances
file_executor: ThreadPoolExecutor | None = None
supervisor_executor: ThreadPoolExecutor | None = None
orchestrator: BatchOrchestrator | None = None


@lru_cache
def get_vision_reader() -> VisionScoreReader:
    """Shared vision reader (dependency)."""
    return GeminiVisionReader()


def default_task_factory(db: Session) -> ScoringTask:
    return ScoringTask(db, get_vision_reader())


def init_workers(task_factory: Callable[[Session], ScoringTask] | None = None) -> BatchOrchestrator:
    """Create the file and supervisor pools. No-op when already running."""
    global file_executor, supervisor_executor, orchestrator
    if orchestrator is not None:
        return orchestrator

    file_executor = ThreadPoolExecutor(
        max_workers=settings.BATCH_MAX_WORKERS,
        thread_name_prefix="score-file",
    )
    supervisor_executor = ThreadPoolExecutor(
        max_workers=settings.BATCH_SUPERVISOR_WORKERS,
        thread_name_prefix="score-batch",
    )
    orchestrator = BatchOrchestrator(
        file_executor=file_executor,
        supervisor_executor=supervisor_executor,
        task_factory=task_factory or default_task_factory,
    )
    logger.info(
        f"Worker pools started ({settings.BATCH_MAX_WORKERS} file workers, "
        f"{settings.BATCH_SUPERVISOR_WORKERS} supervisors)"
    )
    return orchestrator


def shutdown_workers() -> None:
    """Drain queued files, then let supervisors finalize their batches."""
    global file_executor, supervisor_executor, orchestrator
    if file_executor is not None:
        file_executor.shutdown(wait=True)
    if supervisor_executor is not None:
        supervisor_executor.shutdown(wait=True)
    if orchestrator is not None:
        logger.info("Worker pools stopped")
    file_executor = supervisor_executor = orchestrator = None


def get_orchestrator() -> BatchOrchestrator:
    """Batch orchestrator (dependency)."""
    return orchestrator or init_workers()
