from pydantic import BaseModel
from typing import List, Optional

class JobCreate(BaseModel):
    id: str
    streamUrl: str
    callbackUrl: Optional[str] = None

class JobOut(BaseModel):
    id: str
    status: str
    sourceUrl: str
    callbackUrl: Optional[str] = None
    publicStreamUrl: str
    processStarted: bool
    markedAsStopped: bool
    markedAsEnded: bool
    initErrorCount: int
    processErrorCount: int
    liveDelayMs: int
    lastError: Optional[str] = None
    warnings: List[str] = []

class VisibilityOut(BaseModel):
    id: str
    visibility: str
