from __future__ import annotations
import os
import threading
from typing import Optional

from supervisor.app.config import load_config
from supervisor.app.logging_setup import setup_logger
from supervisor.app.main import build_manager
from supervisor.app.manager import JobManager

_manager: Optional[JobManager] = None
_lock = threading.Lock()

def get_manager() -> JobManager:
    global _manager
    with _lock:
        if _manager is None:
            cfg = load_config(os.getenv("CONFIG_PATH", "/config/streams.yaml"))
            logger = setup_logger(os.getenv("LOG_DIR", "/shared/logs"), name="supervisor-api")
            _manager = build_manager(cfg, logger)
        return _manager
