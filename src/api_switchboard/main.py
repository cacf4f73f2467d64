from typing import Dict, List

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from loguru import logger

from api_switchboard.core.config import load_config
from api_switchboard.core.errors import (
    JobConflictError,
    JobStateError,
    RequestParseError,
    SinkError
)
from api_switchboard.core.job_manager import JobManager
from api_switchboard.core.models import (
    EnrichmentRequest,
    ParseRequest,
    ResumeRequest,
    TransportRequest
)

# Load environment config
config = load_config()

app = FastAPI(
    title=config.service.name,
    version=config.service.version,
    docs_url="/docs" if config.service.docs_enabled else None
)

# Initialize manager
job_manager = JobManager(config)


def _raise_for(e: Exception) -> None:
    """Map engine errors to HTTP errors."""
    if isinstance(e, KeyError):
        raise HTTPException(status_code=404, detail=str(e).strip("'"))
    if isinstance(e, (JobConflictError, JobStateError)):
        logger.warning(f"Rejected job operation: {str(e)}")
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (RequestParseError, SinkError, ValueError)):
        logger.error(f"Invalid request: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))
    logger.error(f"Request failed: {str(e)}")
    raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/v1/requests/infer")
async def infer_request(request: ParseRequest) -> Dict:
    """Parse a curl string and report the inferred pagination."""
    try:
        return job_manager.infer(request.curl)
    except Exception as e:
        _raise_for(e)


@app.post("/v1/transports")
async def start_transport(request: TransportRequest) -> Dict:
    """Start a bulk transport of every page to a sink."""
    try:
        return await job_manager.trigger_transport(request)
    except Exception as e:
        _raise_for(e)


@app.post("/v1/enrichments")
async def start_enrichment(request: EnrichmentRequest) -> Dict:
    """Start a per-key enrichment merged back into the spreadsheet."""
    try:
        return await job_manager.trigger_enrichment(request)
    except Exception as e:
        _raise_for(e)


@app.post("/v1/enrichments/{job_id}/resume")
async def resume_enrichment(job_id: str, request: ResumeRequest) -> Dict:
    """Continue a finished or cancelled enrichment from an index."""
    try:
        return await job_manager.resume_enrichment(job_id, request.from_index)
    except Exception as e:
        _raise_for(e)


@app.get("/v1/jobs")
async def list_jobs() -> List[Dict]:
    return job_manager.list_jobs()


@app.get("/v1/jobs/{job_id}")
async def get_job(job_id: str) -> Dict:
    """Snapshot of a job, including its event and error logs."""
    try:
        return job_manager.get_status(job_id)
    except Exception as e:
        _raise_for(e)


@app.post("/v1/jobs/{job_id}/pause")
async def pause_job(job_id: str) -> Dict:
    try:
        return job_manager.pause(job_id)
    except Exception as e:
        _raise_for(e)


@app.post("/v1/jobs/{job_id}/resume")
async def resume_job(job_id: str) -> Dict:
    try:
        return job_manager.resume(job_id)
    except Exception as e:
        _raise_for(e)


@app.post("/v1/jobs/{job_id}/cancel")
async def cancel_job(job_id: str) -> Dict:
    try:
        return job_manager.cancel(job_id)
    except Exception as e:
        _raise_for(e)


@app.get("/health")
async def health_check() -> Dict:
    """Health check endpoint."""
    return await job_manager.check_health()


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


if __name__ == "__main__":
    uvicorn.run(app, host=config.service.host, port=config.service.port)
