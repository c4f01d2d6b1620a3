from __future__ import annotations
import os
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

MANIFEST_FILENAME = "master.m3u8"
BACKUP_FILENAME = "master.bck.m3u8"


class JobStatus:
    INITIALIZED = "initialized"
    VERIFYING = "verifying"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FINISHED = "finished"
    ERRORED = "errored"
    STOPPED = "stopped"

    TERMINAL = frozenset({FINISHED, ERRORED, STOPPED})


class ErrorKind:
    INITIALIZATION = "InitializationError"
    INITIALIZATION_PROCESS = "InitializationProcessError"
    PROCESS = "ProcessError"
    DIRECTORY = "DirectoryError"
    CALLBACK = "CallbackError"
    MANIFEST_STATE = "ManifestStateError"


class Visibility:
    PUBLIC = "public"
    PRIVATE = "private"
    DELETED = "deleted"


class JobListener(Protocol):
    """Receives the notifications a job publishes to its owner."""

    def on_end(self, job: "Job") -> None: ...

    def on_error(self, job: "Job", kind: str, detail: Optional[str]) -> None: ...

    def on_warning(self, job: "Job", detail: str) -> None: ...


def normalize_source_url(url: str) -> str:
    # Sources are probed and pulled over plain http.
    prefix = "https://"
    if url.startswith(prefix):
        return "http://" + url[len(prefix):]
    return url


@dataclass
class Job:
    id: str
    source_url: str
    base_path: str
    segment_duration: int
    max_segments: int
    user_agent: str
    control_plane_base_url: str
    cdn_base_url: str
    callback_url: Optional[str] = None

    status: str = JobStatus.INITIALIZED
    process_started: bool = False
    marked_as_stopped: bool = False
    marked_as_ended: bool = False
    init_error_count: int = 0
    process_error_count: int = 0
    live_delay_ms: int = 0
    terminal_signalled: bool = False
    start_time: float = field(default_factory=time.time)

    last_error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.source_url = normalize_source_url(self.source_url)

    @property
    def output_folder(self) -> str:
        return os.path.join(self.base_path, self.id)

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.output_folder, MANIFEST_FILENAME)

    @property
    def backup_path(self) -> str:
        return os.path.join(self.output_folder, BACKUP_FILENAME)

    @property
    def public_stream_url(self) -> str:
        return f"{self.cdn_base_url.rstrip('/')}/{self.id}/{MANIFEST_FILENAME}"

    @property
    def status_url(self) -> str:
        return f"{self.control_plane_base_url.rstrip('/')}/broadcasts/{self.id}"

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def describe(self) -> str:
        return f"Stream: {self.source_url} ({self.id})"

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "sourceUrl": self.source_url,
            "callbackUrl": self.callback_url,
            "publicStreamUrl": self.public_stream_url,
            "processStarted": self.process_started,
            "markedAsStopped": self.marked_as_stopped,
            "markedAsEnded": self.marked_as_ended,
            "initErrorCount": self.init_error_count,
            "processErrorCount": self.process_error_count,
            "liveDelayMs": self.live_delay_ms,
            "lastError": self.last_error,
            "warnings": list(self.warnings),
        }
