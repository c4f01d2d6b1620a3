from __future__ import annotations
import os
import shutil
import threading
from typing import Callable, Optional

import requests

from .config import RetryConfig, SupervisorConfig
from .http_client import build_session
from .jobs import ErrorKind, Job, JobListener, JobStatus
from .manifest import CannedManifests, ManifestStateManager
from .process_supervisor import ProcessSupervisor
from .scheduling import CancellationToken, Scheduler, ThreadingScheduler, TimerHandle
from .status_sync import StatusSync


class JobSupervisor:
    """
    State machine of one segmenting job.

      initialized -> verifying -> starting -> running -> finished | errored
                                                 any  -> stopping -> stopped

    Terminal states are final. The owner gets exactly one terminal
    notification (end or error) and any number of warnings.

    Every callback for the job (probe results, timers, ffmpeg events) runs
    under `lock`. Network calls and delays happen outside it, and whatever
    resumes after them checks `token` first.
    """

    def __init__(
        self,
        job: Job,
        *,
        config: SupervisorConfig,
        retry: RetryConfig,
        canned: CannedManifests,
        logger,
        listener: Optional[JobListener] = None,
        session: Optional[requests.Session] = None,
        scheduler: Optional[Scheduler] = None,
        segmenter_factory: Optional[Callable] = None,
    ):
        self.job = job
        self.config = config
        self.retry = retry
        self.logger = logger
        self.listener = listener
        self.session = session or build_session(job.user_agent)
        self.scheduler = scheduler or ThreadingScheduler()
        self.lock = threading.RLock()
        self.token = CancellationToken()

        self.manifest = ManifestStateManager(job.manifest_path, job.backup_path, canned, logger)
        self.process = ProcessSupervisor(self, segmenter_factory=segmenter_factory)
        self.status_sync = StatusSync(
            job,
            self.manifest,
            session=self.session,
            scheduler=self.scheduler,
            logger=logger,
            default_delay=retry.status_default_delay,
            http_timeout=config.http_timeout,
            report=self.signal_warning,
            lock=self.lock,
        )

    def _log(self, message: str):
        self.logger.info(f"[job] {message} - {self.job.describe()}")

    def schedule(self, delay: float, fn: Callable[[], None], name: str = "") -> TimerHandle:
        """Delayed step of the start sequence; dropped when the job is stopped."""
        return self.token.track(self.scheduler.call_later(delay, fn, name=name))

    def transition(self, status: str) -> bool:
        with self.lock:
            if self.job.status == status:
                return True
            if self.job.is_terminal:
                self.logger.debug(
                    f"[job] ignoring {self.job.status} -> {status}: already terminal - {self.job.describe()}"
                )
                return False
            self.job.status = status
            return True

    # --- start sequence ---

    def start(self):
        """Probes the source and, once it answers 200, launches ffmpeg."""
        with self.lock:
            if self.token.cancelled:
                self._log("Stream was marked as stopped. Removed from the queue.")
                return
            if not self.transition(JobStatus.VERIFYING):
                return
        self._log("Verifying stream is up...")
        self.schedule(0, self._probe, name=f"probe-{self.job.id}")

    def _probe(self):
        status_code: Optional[int] = None
        try:
            response = self.session.get(self.job.source_url, timeout=self.config.http_timeout)
            status_code = response.status_code
            response.close()
        except requests.RequestException as e:
            self.logger.warning(f"[job] probe failed: {e} - {self.job.describe()}")
        self._handle_probe_result(status_code)

    def _handle_probe_result(self, status_code: Optional[int]):
        job = self.job
        with self.lock:
            if self.token.cancelled:
                self._log("Stream was marked as stopped. Removed from the queue.")
                return

            if status_code == 200:
                self._log("Stream is up! Starting it....")
                self.schedule(job.segment_duration * 3, self.internal_start, name=f"start-{job.id}")
                return

            job.init_error_count += 1
            if job.init_error_count >= self.retry.init_max_errors:
                self._log("Stream is down after max retries. Finishing it")
                self.transition(JobStatus.ERRORED)
                code = status_code if status_code is not None else "Unknown"
                self.signal_error(ErrorKind.INITIALIZATION, f"HTTP Error code: {code}")
                return

            self.schedule(self.retry.init_try_interval, self.start, name=f"retry-{job.id}")

    def internal_start(self):
        with self.lock:
            if self.token.cancelled:
                self._log("Stream was marked as stopped. Launch skipped.")
                return
            if not self.transition(JobStatus.STARTING):
                return
            try:
                self._prepare_output_folder()
            except OSError as e:
                self.logger.error(f"[job] could not prepare {self.job.output_folder}: {e} - {self.job.describe()}")
                self.transition(JobStatus.ERRORED)
                self.signal_error(ErrorKind.DIRECTORY, str(e))
                return
            self.process.launch()

    def _prepare_output_folder(self):
        folder = self.job.output_folder
        if os.path.exists(folder):
            self.remove_all_files()
        os.makedirs(folder)

    # --- caller operations ---

    def stop(self):
        with self.lock:
            self.token.cancel()
            self.job.marked_as_stopped = True
            self.transition(JobStatus.STOPPING)
            self.transition(JobStatus.STOPPED)
            self._log("Stopping stream")
            self.process.terminate()
            self.signal_end()

    def mark_as_finished(self):
        with self.lock:
            self.job.marked_as_ended = True

    def remove_all_files(self):
        shutil.rmtree(self.job.output_folder)

    def get_visibility(self) -> str:
        return self.manifest.get_status()

    def mark_as_private(self):
        with self.lock:
            self.manifest.mark_as_private()

    def mark_as_deleted(self):
        with self.lock:
            self.manifest.mark_as_deleted()

    def mark_as_restored(self):
        with self.lock:
            self.manifest.mark_as_restored()

    # --- notifications ---

    def _claim_terminal(self, what: str) -> bool:
        if self.job.terminal_signalled:
            self._log(f"Terminal notification already sent. Ignoring {what}")
            return False
        self.job.terminal_signalled = True
        return True

    def signal_end(self):
        with self.lock:
            if not self._claim_terminal("end"):
                return
            self.status_sync.run()
            self._emit("on_end", self.job)

    def signal_error(self, kind: str, detail: Optional[str] = None):
        with self.lock:
            if not self._claim_terminal(f"error {kind}"):
                return
            self.job.last_error = f"{kind}: {detail}" if detail else kind
            self.status_sync.run()
            self._emit("on_error", self.job, kind, detail)

    def signal_warning(self, detail: str):
        with self.lock:
            self.logger.warning(f"[job] {detail} - {self.job.describe()}")
            self.job.warnings.append(detail)
            self._emit("on_warning", self.job, detail)

    def _emit(self, event: str, *args):
        if self.listener is None:
            return
        try:
            getattr(self.listener, event)(*args)
        except Exception:
            self.logger.exception(f"[job] listener failed handling {event} - {self.job.describe()}")
