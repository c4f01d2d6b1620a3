# supervisor/app/main.py
from __future__ import annotations

import os
import time

from .config import AppConfig, load_config
from .logging_setup import setup_logger
from .manager import JobManager
from .manifest import load_canned_manifests


def build_manager(cfg: AppConfig, logger, **overrides) -> JobManager:
    """
    Manager for every job of this process. The canned private/deleted
    manifests are read here, once, and shared read-only by all jobs.
    """
    canned = load_canned_manifests(cfg.supervisor.output_base_path, logger=logger)
    return JobManager(
        config=cfg.supervisor,
        retry=cfg.retry,
        canned=canned,
        logger=logger,
        **overrides,
    )


def _start_streams(*, cfg: AppConfig, manager: JobManager, logger):
    """
    Starts one supervised job per configured stream:
      - reachability probe (retried)
      - ffmpeg HLS segmenter into <output_base_path>/<id>/master.m3u8
      - status reconciliation once it ends
    """
    for stream in cfg.streams:
        supervisor = manager.start(stream.id, stream.source_url, stream.callback_url)
        logger.info(f"[main] started stream job: {stream.id} -> {supervisor.job.public_stream_url}")


def main():
    config_path = os.getenv("CONFIG_PATH", "/config/streams.yaml")
    log_dir = os.getenv("LOG_DIR", "/shared/logs")
    log_level = os.getenv("LOG_LEVEL", "INFO")
    poll_seconds = float(os.getenv("POLL_SECONDS", "5"))

    cfg = load_config(config_path)
    logger = setup_logger(log_dir, level=log_level)

    manager = build_manager(cfg, logger)
    _start_streams(cfg=cfg, manager=manager, logger=logger)

    logger.info("[main] supervisor running")
    try:
        while not manager.all_terminal():
            time.sleep(poll_seconds)
    except KeyboardInterrupt:
        logger.info("[main] interrupted, stopping all streams")
        manager.stop_all()

    # status reconciliation timers are daemon threads; give them a chance to run
    grace = cfg.retry.status_default_delay
    logger.info(f"[main] all streams finished. Waiting {grace:.0f}s for status sync")
    time.sleep(grace)


if __name__ == "__main__":
    main()
