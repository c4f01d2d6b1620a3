from __future__ import annotations

import os
import threading

import requests

from supervisor.app.jobs import ErrorKind, Visibility

SOURCE = "http://source.test/live.m3u8"
STATUS_URL = "http://control.test/broadcasts/job-1"
LIVE_MANIFEST = "#EXTM3U\n#EXT-X-VERSION:3\n#EXTINF:10.0,\nmaster0.ts\n"


def _running_job(make_supervisor, scheduler, session, segmenters, manifest=LIVE_MANIFEST):
    supervisor = make_supervisor()
    session.script("GET", SOURCE, 200)
    supervisor.start()
    scheduler.run_until_idle()
    with open(supervisor.job.manifest_path, "w", encoding="utf-8", newline="") as f:
        f.write(manifest)
    segmenters[-1].on_progress({"progress": "continue"})
    return supervisor


def _read(path):
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def test_terminal_signal_appends_end_marker(make_supervisor, scheduler, session, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)

    segmenters[-1].on_end()

    assert _read(supervisor.job.manifest_path) == LIVE_MANIFEST + "#EXT-X-ENDLIST\n"


def test_manifest_already_ended_is_left_alone(make_supervisor, scheduler, session, segmenters) -> None:
    ended = LIVE_MANIFEST + "#EXT-X-ENDLIST\n"
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters, manifest=ended)

    segmenters[-1].on_end()

    assert _read(supervisor.job.manifest_path) == ended


def test_status_poll_waits_twice_the_live_delay(make_supervisor, scheduler, session, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    supervisor.job.live_delay_ms = 4_000

    segmenters[-1].on_end()

    (poll,) = scheduler.pending("status-")
    assert poll.due - scheduler.now == 8.0


def test_status_poll_uses_default_delay_without_live_delay(make_supervisor, scheduler, session, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    supervisor.job.live_delay_ms = 0

    segmenters[-1].on_end()

    (poll,) = scheduler.pending("status-")
    assert poll.due - scheduler.now == 60


def test_not_found_on_control_plane_makes_stream_private(make_supervisor, scheduler, session, listener, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    session.script("GET", STATUS_URL, 404)

    segmenters[-1].on_end()
    scheduler.run_until_idle()

    assert session.count("GET", STATUS_URL) == 1
    assert supervisor.get_visibility() == Visibility.PRIVATE
    assert _read(supervisor.job.backup_path) == LIVE_MANIFEST + "#EXT-X-ENDLIST\n"
    assert listener.events == [("end",)]


def test_status_request_uses_configured_timeout(make_supervisor, scheduler, session, segmenters) -> None:
    _running_job(make_supervisor, scheduler, session, segmenters)

    segmenters[-1].on_end()
    scheduler.run_until_idle()

    (call,) = [c for c in session.calls if c[1] == STATUS_URL]
    assert call[2]["timeout"] == 10.0


def test_already_private_stream_is_not_backed_up_again(make_supervisor, scheduler, session, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    session.script("GET", STATUS_URL, 404)
    segmenters[-1].on_end()
    supervisor.mark_as_private()
    os.remove(supervisor.job.backup_path)

    scheduler.run_until_idle()

    assert supervisor.get_visibility() == Visibility.PRIVATE
    assert not os.path.exists(supervisor.job.backup_path)


def test_live_stream_on_control_plane_keeps_manifest_public(make_supervisor, scheduler, session, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    session.script("GET", STATUS_URL, 200)

    segmenters[-1].on_end()
    scheduler.run_until_idle()

    assert supervisor.get_visibility() == Visibility.PUBLIC
    assert not os.path.exists(supervisor.job.backup_path)


def test_unreachable_control_plane_is_logged_only(make_supervisor, scheduler, session, listener, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    session.script("GET", STATUS_URL, requests.Timeout("slow"))

    segmenters[-1].on_end()
    scheduler.run_until_idle()

    assert supervisor.get_visibility() == Visibility.PUBLIC
    assert listener.events == [("end",)]


def test_privatization_failure_is_reported_as_warning(make_supervisor, scheduler, session, listener, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    session.script("GET", STATUS_URL, 404)
    segmenters[-1].on_end()
    os.remove(supervisor.job.manifest_path)

    scheduler.run_until_idle()

    assert listener.events[0] == ("end",)
    (warning,) = listener.of("warning")
    assert warning[1].startswith(ErrorKind.MANIFEST_STATE)
    assert supervisor.job.is_terminal


def test_job_that_never_started_skips_reconciliation(make_supervisor, scheduler, session, listener, segmenters) -> None:
    supervisor = make_supervisor()
    session.script("GET", SOURCE, 200)
    supervisor.start()
    scheduler.run_until_idle()

    supervisor.stop()

    assert scheduler.pending("status-") == []
    assert session.count("GET", STATUS_URL) == 0
    assert listener.events == [("end",)]


def test_privatization_waits_for_the_job_lock(make_supervisor, scheduler, session, segmenters) -> None:
    supervisor = _running_job(make_supervisor, scheduler, session, segmenters)
    session.script("GET", STATUS_URL, 404)
    segmenters[-1].on_end()
    (poll,) = scheduler.pending("status-")
    done = threading.Event()

    def _poll():
        poll.fn()
        done.set()

    with supervisor.lock:
        worker = threading.Thread(target=_poll, daemon=True)
        worker.start()
        assert not done.wait(timeout=0.2)
        assert supervisor.get_visibility() == Visibility.PUBLIC
    worker.join(timeout=5)

    assert done.is_set()
    assert supervisor.get_visibility() == Visibility.PRIVATE
