import logging
import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from supervisor.app.config import RetryConfig, SupervisorConfig  # noqa: E402
from supervisor.app.job_supervisor import JobSupervisor  # noqa: E402
from supervisor.app.jobs import Job  # noqa: E402
from supervisor.app.manifest import CannedManifests  # noqa: E402


PRIVATE_TEMPLATE = "#type:private\n#EXTM3U\n#EXT-X-ENDLIST\n"
DELETED_TEMPLATE = "#type:deleted\n#EXTM3U\n#EXT-X-ENDLIST\n"


class _Timer:
    def __init__(self, due: float, seq: int, fn, name: str):
        self.due = due
        self.seq = seq
        self.fn = fn
        self.name = name
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def is_alive(self) -> bool:
        return not (self.cancelled or self.fired)


class FakeScheduler:
    """Virtual clock: callbacks only run when the test asks for them."""

    def __init__(self):
        self.now = 0.0
        self.timers: List[_Timer] = []
        self._seq = 0

    def call_later(self, delay, fn, name=""):
        self._seq += 1
        timer = _Timer(self.now + delay, self._seq, fn, name)
        self.timers.append(timer)
        return timer

    def pending(self, prefix: str = "") -> List[_Timer]:
        return [t for t in self.timers if t.is_alive() and t.name.startswith(prefix)]

    def run_next(self) -> Optional[_Timer]:
        alive = self.pending()
        if not alive:
            return None
        timer = min(alive, key=lambda t: (t.due, t.seq))
        self.now = max(self.now, timer.due)
        timer.fired = True
        timer.fn()
        return timer

    def run_until_idle(self, limit: int = 1000) -> int:
        ran = 0
        while ran < limit and self.run_next() is not None:
            ran += 1
        return ran


class FakeResponse:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text

    def close(self):
        pass


class FakeSession:
    """
    Scripted HTTP: per-URL queues of status codes or exceptions.
    The last scripted answer repeats once the queue is exhausted.
    """

    def __init__(self):
        self.scripts = {}
        self.calls = []

    def script(self, method: str, url: str, *answers):
        self.scripts[(method, url)] = list(answers)

    def _answer(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        answers = self.scripts.get((method, url)) or [200]
        answer = answers.pop(0) if len(answers) > 1 else answers[0]
        if isinstance(answer, Exception):
            raise answer
        return FakeResponse(answer)

    def get(self, url, **kwargs):
        return self._answer("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._answer("POST", url, **kwargs)

    def count(self, method: str, url: str) -> int:
        return sum(1 for m, u, _ in self.calls if m == method and u == url)


class FakeSegmenter:
    instances: List["FakeSegmenter"] = []

    def __init__(self, cfg, logger, *, on_progress, on_error, on_end):
        self.cfg = cfg
        self.logger = logger
        self.on_progress = on_progress
        self.on_error = on_error
        self.on_end = on_end
        self.started = False
        self.stopped = False
        FakeSegmenter.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


class RecordingListener:
    def __init__(self):
        self.events = []

    def on_end(self, job):
        self.events.append(("end",))

    def on_error(self, job, kind, detail):
        self.events.append(("error", kind, detail))

    def on_warning(self, job, detail):
        self.events.append(("warning", detail))

    def of(self, name: str):
        return [e for e in self.events if e[0] == name]


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def segmenters():
    FakeSegmenter.instances = []
    yield FakeSegmenter.instances
    FakeSegmenter.instances = []


@pytest.fixture
def logger():
    return logging.getLogger("supervisor-tests")


@pytest.fixture
def canned():
    return CannedManifests(private=PRIVATE_TEMPLATE, deleted=DELETED_TEMPLATE)


@pytest.fixture
def supervisor_config(tmp_path):
    return SupervisorConfig(
        output_base_path=str(tmp_path),
        segment_duration=10,
        max_segments=30,
        control_plane_base_url="http://control.test",
        cdn_base_url="http://cdn.test",
        user_agent="tests",
    )


@pytest.fixture
def retry():
    return RetryConfig(
        init_try_interval=5,
        init_max_errors=80,
        process_try_interval=5,
        process_max_errors=40,
        status_default_delay=60,
    )


@pytest.fixture
def make_supervisor(supervisor_config, retry, canned, logger, listener, session, scheduler, segmenters):
    def _make(job_id="job-1", source_url="http://source.test/live.m3u8", callback_url=None, **retry_overrides):
        job = Job(
            id=job_id,
            source_url=source_url,
            callback_url=callback_url,
            base_path=supervisor_config.output_base_path,
            segment_duration=supervisor_config.segment_duration,
            max_segments=supervisor_config.max_segments,
            user_agent=supervisor_config.user_agent,
            control_plane_base_url=supervisor_config.control_plane_base_url,
            cdn_base_url=supervisor_config.cdn_base_url,
        )
        return JobSupervisor(
            job,
            config=supervisor_config,
            retry=retry.model_copy(update=retry_overrides),
            canned=canned,
            logger=logger,
            listener=listener,
            session=session,
            scheduler=scheduler,
            segmenter_factory=FakeSegmenter,
        )

    return _make

