from __future__ import annotations
from typing import Callable

import requests

from .jobs import ErrorKind, Job, Visibility
from .manifest import ManifestStateError, ManifestStateManager
from .scheduling import Scheduler


class StatusSync:
    """
    Runs once a job has ended or failed:
      1. makes sure master.m3u8 is closed with #EXT-X-ENDLIST
      2. later asks the control plane about the broadcast; a 404 means the
         stream was taken down there, so the manifest is made private.
    Nothing here changes the job's terminal state.
    """

    def __init__(
        self,
        job: Job,
        manifest: ManifestStateManager,
        *,
        session: requests.Session,
        scheduler: Scheduler,
        logger,
        default_delay: float,
        http_timeout: float,
        report: Callable[[str], None],
        lock,
    ):
        self.job = job
        self.manifest = manifest
        self.session = session
        self.scheduler = scheduler
        self.logger = logger
        self.default_delay = default_delay
        self.http_timeout = http_timeout
        self.report = report
        self.lock = lock

    def run(self):
        if not self.job.process_started:
            return

        try:
            if self.manifest.ensure_ended():
                self.logger.info(
                    f"[status] Stream finished without being marked as vod. Marked it - {self.job.describe()}"
                )
        except ManifestStateError as e:
            self.logger.warning(f"[status] could not close manifest: {e} - {self.job.describe()}")

        self.scheduler.call_later(self.poll_delay(), self.poll, name=f"status-{self.job.id}")

    def poll_delay(self) -> float:
        delay_ms = self.job.live_delay_ms * 2
        if delay_ms == 0:
            return self.default_delay
        return delay_ms / 1000

    def poll(self):
        job = self.job
        self.logger.info(f"[status] Updating stream status - {job.describe()}")
        try:
            response = self.session.get(job.status_url, timeout=self.http_timeout)
        except requests.RequestException as e:
            self.logger.warning(f"[status] status request failed: {e} - {job.describe()}")
            return

        if response.status_code != 404:
            return

        self.logger.info(f"[status] Update status returned 404. Marking stream as private - {job.describe()}")
        with self.lock:
            try:
                if self.manifest.get_status() != Visibility.PRIVATE:
                    self.manifest.mark_as_private()
            except ManifestStateError as e:
                self.logger.error(f"[status] Error marking stream as private: {e} - {job.describe()}")
                self.report(f"{ErrorKind.MANIFEST_STATE}. Marking as private: {e}")
