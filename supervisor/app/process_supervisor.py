from __future__ import annotations
import time
from typing import TYPE_CHECKING, Callable, Dict, Optional

import requests

from .jobs import ErrorKind, JobStatus
from .segmenter import TERMINATION_SIGNAL, FFMpegSegmenter, ProcessExit, SegmenterConfig

if TYPE_CHECKING:
    from .job_supervisor import JobSupervisor


class ProcessSupervisor:
    """
    Owns the ffmpeg process of one job and decides what each of its events means.

    Before the first progress event every failure is treated as "ffmpeg could
    not connect yet" and retried (through a fresh reachability probe) up to
    `process_max_errors`. After it, a failure is either our own kill, which
    ends the job normally, or a real runtime error.
    """

    def __init__(self, owner: "JobSupervisor", segmenter_factory: Optional[Callable[..., FFMpegSegmenter]] = None):
        self.owner = owner
        self.segmenter_factory = segmenter_factory or FFMpegSegmenter
        self.segmenter: Optional[FFMpegSegmenter] = None

    @property
    def job(self):
        return self.owner.job

    @property
    def logger(self):
        return self.owner.logger

    def _log(self, message: str):
        self.logger.info(f"[process] {message} - {self.job.describe()}")

    def launch(self):
        """Builds the command from the job's current parameters and starts ffmpeg."""
        job = self.job
        cfg = SegmenterConfig(
            source_url=job.source_url,
            manifest_path=job.manifest_path,
            segment_duration=job.segment_duration,
            max_segments=job.max_segments,
            ffmpeg_binary=self.owner.config.ffmpeg_binary,
        )
        self._log(
            f"Building command. Manifest: {cfg.manifest_path}, "
            f"Segment size: {cfg.segment_duration}, Segments: {cfg.max_segments}"
        )
        self.segmenter = self.segmenter_factory(
            cfg,
            self.logger,
            on_progress=self.handle_progress,
            on_error=self.handle_error,
            on_end=self.handle_end,
        )
        self.segmenter.start()

    def terminate(self):
        if self.segmenter is not None:
            self.segmenter.stop()

    # --- process events ---

    def handle_progress(self, fields: Dict[str, str]):
        job = self.job
        with self.owner.lock:
            first = not job.process_started
            if first:
                job.process_started = True
                job.live_delay_ms = int(2 * (time.time() - job.start_time) * 1000)
                self._log("Generation of HLS output files started")
                self._log(f"Live delay: {job.live_delay_ms} ms")
            self.owner.transition(JobStatus.RUNNING)

        if first and job.callback_url and not self.owner.token.cancelled:
            self.owner.scheduler.call_later(0, self._notify_started, name=f"callback-{job.id}")

    def _notify_started(self):
        job = self.job
        payload = {
            "id": job.id,
            "upcloseStreamUrl": job.public_stream_url,
            "liveDelay": job.live_delay_ms / 1000,
        }
        self._log(f"Calling callback to notify stream started: {job.callback_url}")
        try:
            response = self.owner.session.post(
                job.callback_url,
                json=payload,
                timeout=self.owner.config.http_timeout,
            )
        except requests.RequestException as e:
            self.owner.signal_warning(f"{ErrorKind.CALLBACK}. Error calling callback: {e}")
            return
        if response.status_code != 200:
            self.owner.signal_warning(
                f"{ErrorKind.CALLBACK}. Error calling callback: {response.status_code}, "
                f"body: {response.text}"
            )

    def handle_error(self, result: ProcessExit):
        job = self.job
        with self.owner.lock:
            if not job.process_started:
                self._handle_start_failure(result)
                return

            if result.killed_by(TERMINATION_SIGNAL):
                self._log("Stream stopped as requested")
                self.owner.transition(JobStatus.FINISHED)
                self.owner.signal_end()
            else:
                self.logger.warning(
                    f"[process] An error occurred processing the stream, error: {result.detail} - {job.describe()}"
                )
                self.owner.transition(JobStatus.ERRORED)
                self.owner.signal_error(ErrorKind.PROCESS, result.detail)

    def _handle_start_failure(self, result: ProcessExit):
        job = self.job
        job.process_error_count += 1
        self._log(f"Error detected while initializing ffmpeg process ({job.process_error_count})")

        if self.owner.token.cancelled:
            self._log("Stream was marked as stopped. Removed from the queue.")
            return

        if job.process_error_count >= self.owner.retry.process_max_errors:
            self._log("Max initialization errors reached (ffmpeg couldn't connect)")
            self.owner.transition(JobStatus.ERRORED)
            self.owner.signal_error(ErrorKind.INITIALIZATION_PROCESS, result.detail)
            return

        self._log("Relaunching ffmpeg...")
        self.owner.schedule(self.owner.retry.process_try_interval, self._relaunch, name=f"relaunch-{job.id}")

    def _relaunch(self):
        if self.owner.token.cancelled:
            self._log("Stream was marked as stopped. Relaunch skipped.")
            return
        self._log("Rebuilding ffmpeg command and launching the process")
        # the probe runs again; launch() rebuilds the command afterwards
        self.owner.start()

    def handle_end(self):
        job = self.job
        with self.owner.lock:
            if not job.marked_as_ended:
                self._log("Finished without being signaled as finished")
            else:
                self._log("Finished processing stream")
            self.owner.transition(JobStatus.FINISHED)
            self.owner.signal_end()
