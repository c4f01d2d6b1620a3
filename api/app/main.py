from __future__ import annotations
from fastapi import Depends, FastAPI, HTTPException
from typing import List

from supervisor.app.manager import JobExistsError, JobManager, JobNotFoundError
from supervisor.app.manifest import ManifestStateError

from .schemas import JobCreate, JobOut, VisibilityOut
from .state import get_manager

app = FastAPI(title="HLS Segmenter Supervisor API")

def _get(manager: JobManager, job_id: str):
    try:
        return manager.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

def _visibility(manager: JobManager, job_id: str) -> dict:
    try:
        return {"id": job_id, "visibility": manager.get_visibility(job_id)}
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ManifestStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

@app.post("/jobs", response_model=JobOut, status_code=201)
def create_job(body: JobCreate, manager: JobManager = Depends(get_manager)):
    try:
        supervisor = manager.start(body.id, body.streamUrl, body.callbackUrl)
    except JobExistsError:
        raise HTTPException(status_code=409, detail="Job already running")
    return supervisor.job.snapshot()

@app.get("/jobs", response_model=List[JobOut])
def list_jobs(manager: JobManager = Depends(get_manager)):
    return manager.snapshot()

@app.get("/jobs/{job_id}", response_model=JobOut)
def get_job(job_id: str, manager: JobManager = Depends(get_manager)):
    return _get(manager, job_id).job.snapshot()

@app.post("/jobs/{job_id}/stop", response_model=JobOut)
def stop_job(job_id: str, manager: JobManager = Depends(get_manager)):
    try:
        supervisor = manager.stop(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return supervisor.job.snapshot()

@app.post("/jobs/{job_id}/finish", response_model=JobOut)
def finish_job(job_id: str, manager: JobManager = Depends(get_manager)):
    try:
        supervisor = manager.mark_as_finished(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return supervisor.job.snapshot()

@app.delete("/jobs/{job_id}", status_code=204)
def delete_job(job_id: str, cleanup: bool = False, manager: JobManager = Depends(get_manager)):
    _get(manager, job_id)
    manager.remove(job_id, cleanup=cleanup)

@app.get("/jobs/{job_id}/visibility", response_model=VisibilityOut)
def get_visibility(job_id: str, manager: JobManager = Depends(get_manager)):
    return _visibility(manager, job_id)

def _change_visibility(manager: JobManager, job_id: str, action: str) -> dict:
    try:
        getattr(manager, action)(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ManifestStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _visibility(manager, job_id)

@app.post("/jobs/{job_id}/private", response_model=VisibilityOut)
def mark_private(job_id: str, manager: JobManager = Depends(get_manager)):
    return _change_visibility(manager, job_id, "mark_as_private")

@app.post("/jobs/{job_id}/deleted", response_model=VisibilityOut)
def mark_deleted(job_id: str, manager: JobManager = Depends(get_manager)):
    return _change_visibility(manager, job_id, "mark_as_deleted")

@app.post("/jobs/{job_id}/restored", response_model=VisibilityOut)
def mark_restored(job_id: str, manager: JobManager = Depends(get_manager)):
    return _change_visibility(manager, job_id, "mark_as_restored")
