"""
Job management for FileConverter

Each ConversionJob blocks its thread for the whole FFmpeg run, so the
manager gives every job its own worker from a thread pool.
"""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .config import TranscoderConfig, get_config
from .conversion import ConversionCancelledError, ConversionError, ConversionJob
from .models import ConversionRequest, JobState, JobStatusResponse

logger = logging.getLogger(__name__)


@dataclass
class JobRecord:
    """A submitted conversion and its bookkeeping."""
    id: str
    request: ConversionRequest
    job: ConversionJob
    created_at: datetime = field(default_factory=datetime.now)
    future: Optional[Future] = None

    @property
    def finished(self) -> bool:
        return self.job.state.is_terminal

    def to_status_response(self) -> JobStatusResponse:
        return JobStatusResponse(
            job_id=self.id,
            state=self.job.state,
            progress=self.job.progress,
            input_path=self.request.input_path,
            output_path=self.request.output_path,
            output_type=self.request.output_type,
            cancelled=self.job.cancelled,
            error_message=self.job.error_message,
            created_at=self.created_at,
            started_at=self.job.started_at,
            completed_at=self.job.completed_at,
        )


class JobStats:
    """Statistics for job processing."""

    def __init__(self):
        self.total_jobs_processed: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.cancelled_jobs: int = 0
        self.start_time: datetime = datetime.now()
        self._lock = threading.Lock()

    def record_job_complete(self, record: JobRecord) -> None:
        with self._lock:
            self.total_jobs_processed += 1
            if record.job.cancelled:
                self.cancelled_jobs += 1
            elif record.job.state == JobState.SUCCEEDED:
                self.successful_jobs += 1
            else:
                self.failed_jobs += 1

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now() - self.start_time).total_seconds()


class JobManager:
    """Runs conversion jobs concurrently and keeps their records for polling."""

    def __init__(
        self,
        max_workers: Optional[int] = None,
        keep_finished_jobs: Optional[int] = None,
        transcoder_config: Optional[TranscoderConfig] = None,
    ):
        config = get_config()
        self.max_workers = max_workers or config.jobs.max_concurrent_jobs
        self.keep_finished_jobs = (
            keep_finished_jobs if keep_finished_jobs is not None
            else config.jobs.keep_finished_jobs
        )
        self.transcoder_config = transcoder_config or config.transcoder
        self.jobs: Dict[str, JobRecord] = {}
        self.stats = JobStats()
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="fileconverter_job",
        )
        self._lock = threading.Lock()

    def submit(self, request: ConversionRequest) -> JobRecord:
        """Queue a conversion; it starts as soon as a worker is free."""
        job_id = str(uuid.uuid4())
        record = JobRecord(
            id=job_id,
            request=request,
            job=ConversionJob(request, config=self.transcoder_config),
        )

        with self._lock:
            self.jobs[job_id] = record
            self._prune_finished()

        record.future = self._executor.submit(self._run, record)
        logger.info(f"Created job {job_id}: {request.input_path} -> {request.output_type.value}")
        return record

    def _run(self, record: JobRecord) -> None:
        try:
            record.job.run()
            logger.info(f"Job {record.id} succeeded")
        except ConversionCancelledError:
            logger.info(f"Job {record.id} cancelled")
        except ConversionError as e:
            logger.warning(f"Job {record.id} failed: {e.message}")
        except Exception as e:
            logger.exception(f"Job {record.id} crashed: {e}")
            record.job.conversion_failed(str(e))
        finally:
            self.stats.record_job_complete(record)

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self.jobs.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Cancel a queued or running job. False if unknown or already finished."""
        record = self.jobs.get(job_id)
        if not record:
            return False

        cancelled = record.job.cancel()
        if cancelled:
            logger.info(f"Cancelled job {job_id}")
        return cancelled

    def list_jobs(self) -> List[JobRecord]:
        return list(self.jobs.values())

    def get_active_count(self) -> int:
        return sum(1 for record in self.jobs.values() if not record.finished)

    def _prune_finished(self) -> None:
        """Drop the oldest finished records beyond the retention limit."""
        finished = sorted(
            (record for record in self.jobs.values() if record.finished),
            key=lambda record: record.created_at,
        )
        excess = len(finished) - self.keep_finished_jobs
        for record in finished[:max(0, excess)]:
            del self.jobs[record.id]
            logger.debug(f"Removed finished job {record.id} from tracking")

    def shutdown(self, wait: bool = True) -> None:
        """Cancel everything still pending or running and stop the workers."""
        for record in list(self.jobs.values()):
            if not record.finished:
                record.job.cancel()
        self._executor.shutdown(wait=wait)
        logger.info("Job manager stopped")


# Global job manager instance
_job_manager: Optional[JobManager] = None


def get_job_manager() -> JobManager:
    """Get the global job manager instance."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager()
    return _job_manager


def set_job_manager(manager: Optional[JobManager]) -> None:
    """Set the global job manager instance."""
    global _job_manager
    _job_manager = manager
