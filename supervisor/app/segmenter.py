from __future__ import annotations
import os
import platform
import signal
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

# The one signal used to stop ffmpeg; an exit caused by it counts as a requested stop.
TERMINATION_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)

STDERR_TAIL_LINES = 20


@dataclass
class SegmenterConfig:
    source_url: str
    manifest_path: str
    segment_duration: int = 10
    max_segments: int = 30
    ffmpeg_binary: str = "ffmpeg"


@dataclass
class ProcessExit:
    returncode: Optional[int]
    detail: str

    @property
    def signal(self) -> Optional[int]:
        # Popen reports death-by-signal as -signum on POSIX
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None

    def killed_by(self, sig: int) -> bool:
        return self.signal == int(sig)


def build_command(cfg: SegmenterConfig) -> List[str]:
    return [
        cfg.ffmpeg_binary,
        "-hide_banner",
        "-loglevel", "warning",
        "-nostats",
        "-progress", "pipe:1",
        "-i", cfg.source_url,
        "-c:a", "copy",
        "-c:v", "copy",
        "-f", "hls",
        "-hls_time", str(cfg.segment_duration),
        "-hls_list_size", str(cfg.max_segments),
        cfg.manifest_path,
    ]


class FFMpegSegmenter:
    """
    Runs one ffmpeg HLS process for a stream and reports what it does:
      on_progress(fields)  every `-progress` block ffmpeg writes to stdout
      on_end()             clean exit (code 0)
      on_error(exit)       spawn failure or non-zero exit
    Callbacks run on the segmenter's watcher thread.
    """
    def __init__(
        self,
        cfg: SegmenterConfig,
        logger,
        *,
        on_progress: Callable[[Dict[str, str]], None],
        on_error: Callable[[ProcessExit], None],
        on_end: Callable[[], None],
    ):
        self.cfg = cfg
        self.logger = logger
        self.on_progress = on_progress
        self.on_error = on_error
        self.on_end = on_end
        self.proc: Optional[subprocess.Popen] = None
        self._stop_requested = False
        self._lock = threading.Lock()
        self._watcher: Optional[threading.Thread] = None

    @property
    def command(self) -> List[str]:
        return build_command(self.cfg)

    def start(self):
        self._watcher = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"segmenter-{os.path.basename(os.path.dirname(self.cfg.manifest_path))}",
        )
        self._watcher.start()

    def is_running(self) -> bool:
        return self.proc is not None and self.proc.poll() is None

    def _spawn(self) -> subprocess.Popen:
        cmd = self.command
        self.logger.info(f"[segmenter] starting ffmpeg hls -> {self.cfg.manifest_path}")
        if platform.system() == "Windows":
            return subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
            )
        # own process group so the kill reaches every child
        return subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            preexec_fn=os.setsid,
        )

    def _run(self):
        try:
            proc = self._spawn()
        except OSError as e:
            self.logger.warning(f"[segmenter] could not launch ffmpeg: {e}")
            self._emit(self.on_error, ProcessExit(returncode=None, detail=str(e)))
            return

        with self._lock:
            self.proc = proc
            stop_now = self._stop_requested
        if stop_now:
            self._kill(proc)

        tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        stderr_reader = threading.Thread(
            target=_drain, args=(proc.stderr, tail), daemon=True
        )
        stderr_reader.start()

        fields: Dict[str, str] = {}
        try:
            for line in proc.stdout:
                key, sep, value = line.strip().partition("=")
                if not sep:
                    continue
                fields[key] = value
                if key == "progress":
                    self._emit(self.on_progress, fields)
                    fields = {}
        finally:
            returncode = proc.wait()
            stderr_reader.join(timeout=5)

        if returncode == 0:
            self._emit(self.on_end)
        else:
            detail = "\n".join(tail) or f"ffmpeg exited with code {returncode}"
            self._emit(self.on_error, ProcessExit(returncode=returncode, detail=detail))

    def _emit(self, handler: Callable, *args):
        # stdout is read to EOF whatever the handler does
        try:
            handler(*args)
        except Exception:
            self.logger.exception(f"[segmenter] event handler failed -> {self.cfg.manifest_path}")

    def stop(self):
        with self._lock:
            self._stop_requested = True
            proc = self.proc
        if proc is None or proc.poll() is not None:
            return
        self._kill(proc)

    def _kill(self, proc: subprocess.Popen):
        try:
            if platform.system() == "Windows":
                proc.kill()
            else:
                os.killpg(os.getpgid(proc.pid), TERMINATION_SIGNAL)
        except ProcessLookupError:
            pass
        except OSError as e:
            self.logger.warning(f"[segmenter] error stopping: {e}")
            try:
                proc.kill()
            except OSError:
                pass


def _drain(stream, tail: deque):
    for line in stream:
        line = line.rstrip()
        if line:
            tail.append(line)
