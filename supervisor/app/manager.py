from __future__ import annotations
import threading
from typing import Callable, Dict, List, Optional

from .config import RetryConfig, SupervisorConfig
from .job_supervisor import JobSupervisor
from .jobs import Job
from .manifest import CannedManifests
from .scheduling import Scheduler


class JobExistsError(Exception):
    pass


class JobNotFoundError(KeyError):
    pass


class JobManager:
    """
    Registry of supervised jobs, addressed by id. It is also the listener of
    every job it creates and logs their notifications.
    """

    def __init__(
        self,
        *,
        config: SupervisorConfig,
        retry: RetryConfig,
        canned: CannedManifests,
        logger,
        scheduler: Optional[Scheduler] = None,
        session_factory: Optional[Callable] = None,
        segmenter_factory: Optional[Callable] = None,
    ):
        self.config = config
        self.retry = retry
        self.canned = canned
        self.logger = logger
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.segmenter_factory = segmenter_factory
        self._jobs: Dict[str, JobSupervisor] = {}
        self._lock = threading.Lock()

    def new_job(self, job_id: str, source_url: str, callback_url: Optional[str] = None) -> JobSupervisor:
        job = Job(
            id=job_id,
            source_url=source_url,
            callback_url=callback_url or None,
            base_path=self.config.output_base_path,
            segment_duration=self.config.segment_duration,
            max_segments=self.config.max_segments,
            user_agent=self.config.user_agent,
            control_plane_base_url=self.config.control_plane_base_url,
            cdn_base_url=self.config.cdn_base_url,
        )
        with self._lock:
            current = self._jobs.get(job_id)
            if current is not None and not current.job.is_terminal:
                raise JobExistsError(job_id)
            supervisor = JobSupervisor(
                job,
                config=self.config,
                retry=self.retry,
                canned=self.canned,
                logger=self.logger,
                listener=self,
                session=self.session_factory(job.user_agent) if self.session_factory else None,
                scheduler=self.scheduler,
                segmenter_factory=self.segmenter_factory,
            )
            self._jobs[job_id] = supervisor
        self.logger.info(f"[manager] job created - {job.describe()}")
        return supervisor

    def get(self, job_id: str) -> JobSupervisor:
        with self._lock:
            supervisor = self._jobs.get(job_id)
        if supervisor is None:
            raise JobNotFoundError(job_id)
        return supervisor

    def start(self, job_id: str, source_url: str, callback_url: Optional[str] = None) -> JobSupervisor:
        supervisor = self.new_job(job_id, source_url, callback_url)
        supervisor.start()
        return supervisor

    def stop(self, job_id: str) -> JobSupervisor:
        supervisor = self.get(job_id)
        supervisor.stop()
        return supervisor

    def mark_as_finished(self, job_id: str) -> JobSupervisor:
        supervisor = self.get(job_id)
        supervisor.mark_as_finished()
        return supervisor

    def get_visibility(self, job_id: str) -> str:
        return self.get(job_id).get_visibility()

    def mark_as_private(self, job_id: str) -> JobSupervisor:
        supervisor = self.get(job_id)
        supervisor.mark_as_private()
        return supervisor

    def mark_as_deleted(self, job_id: str) -> JobSupervisor:
        supervisor = self.get(job_id)
        supervisor.mark_as_deleted()
        return supervisor

    def mark_as_restored(self, job_id: str) -> JobSupervisor:
        supervisor = self.get(job_id)
        supervisor.mark_as_restored()
        return supervisor

    def remove(self, job_id: str, cleanup: bool = False) -> JobSupervisor:
        supervisor = self.get(job_id)
        supervisor.stop()
        if cleanup:
            try:
                supervisor.remove_all_files()
            except FileNotFoundError:
                pass
        with self._lock:
            self._jobs.pop(job_id, None)
        return supervisor

    def stop_all(self):
        with self._lock:
            supervisors = list(self._jobs.values())
        for supervisor in supervisors:
            supervisor.stop()

    def all_terminal(self) -> bool:
        with self._lock:
            return all(s.job.is_terminal for s in self._jobs.values())

    def snapshot(self) -> List[dict]:
        with self._lock:
            supervisors = list(self._jobs.values())
        return [s.job.snapshot() for s in supervisors]

    # --- JobListener ---

    def on_end(self, job: Job):
        self.logger.info(f"[manager] job ended ({job.status}) - {job.describe()}")

    def on_error(self, job: Job, kind: str, detail: Optional[str]):
        self.logger.error(f"[manager] job failed: {kind} {detail or ''} - {job.describe()}")

    def on_warning(self, job: Job, detail: str):
        self.logger.warning(f"[manager] job warning: {detail} - {job.describe()}")
