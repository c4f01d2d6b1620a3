from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Optional
import yaml
import os

class RetryConfig(BaseModel):
    init_try_interval: float = 5.0     # seconds between reachability probes
    init_max_errors: int = 80
    process_try_interval: float = 5.0  # seconds before relaunching ffmpeg
    process_max_errors: int = 40
    status_default_delay: float = 60.0  # used when no live delay was measured

class SupervisorConfig(BaseModel):
    output_base_path: str
    segment_duration: int = 10  # seconds per HLS segment
    max_segments: int = 30      # HLS playlist window
    control_plane_base_url: str
    cdn_base_url: str
    user_agent: str = "hls-supervisor"
    http_timeout: float = 10.0
    ffmpeg_binary: str = "ffmpeg"

class StreamConfig(BaseModel):
    id: str
    source_url: str
    callback_url: Optional[str] = None

class AppConfig(BaseModel):
    supervisor: SupervisorConfig
    retry: RetryConfig = Field(default_factory=RetryConfig)
    streams: List[StreamConfig] = Field(default_factory=list)

def load_config(path: str) -> AppConfig:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return AppConfig.model_validate(raw)
