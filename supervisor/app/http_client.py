from __future__ import annotations

import requests


def build_session(user_agent: str) -> requests.Session:
    """Session shared by a job's probe, callback and status requests."""
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent})
    return session
