"""FastAPI backend for long audio transcription with job queue and retention."""
import os
import uuid
import shutil
import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional
import logging

from fastapi import FastAPI, File, UploadFile, HTTPException, Depends, Header, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from apscheduler.schedulers.background import BackgroundScheduler

from backend.api.database import init_db, get_db, Job, SessionLocal
from longscribe import (
    CancellationToken,
    ConfigurationError,
    PipelineOptions,
    PipelineResult,
    Settings,
    build_pipeline,
)
from longscribe.config import BACKEND_ASSEMBLYAI

# Configure logging to avoid leaking sensitive data
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = Settings.from_env()

# Directories for job files
JOBS_DIR = Path(os.getenv("LONGSCRIBE_JOBS_DIR", "jobs"))
JOBS_AUDIO_DIR = JOBS_DIR / "audio"
JOBS_OUTPUT_DIR = JOBS_DIR / "output"

# Create directories
JOBS_AUDIO_DIR.mkdir(parents=True, exist_ok=True)
JOBS_OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

# Initialize FastAPI app
app = FastAPI(title="longscribe API", version="1.0.0")

# In-memory job queue and worker state
job_queue: asyncio.Queue = asyncio.Queue()
api_keys_cache: Dict[str, Dict[str, Optional[str]]] = {}  # job_id -> api keys (memory only)
cancel_tokens: Dict[str, CancellationToken] = {}
worker_task: Optional[asyncio.Task] = None
scheduler: Optional[BackgroundScheduler] = None


def run_job_pipeline(
    audio_path: str,
    options: PipelineOptions,
    api_keys: Dict[str, Optional[str]],
    cancel_token: CancellationToken,
) -> PipelineResult:
    """Run the transcription pipeline for one job (blocking)."""
    pipeline = build_pipeline(
        settings,
        assemblyai_api_key=api_keys.get("assemblyai"),
        openai_api_key=api_keys.get("openai"),
    )
    return pipeline.run(audio_path, options, cancel_token)


async def process_job(job_id: str, audio_path: str, api_keys: Dict[str, Optional[str]], db: Session):
    """Process a transcription job."""
    job = None
    try:
        job = db.query(Job).filter(Job.id == job_id).first()
        if not job:
            logger.error(f"Job {job_id} not found in database")
            return

        # Claim the job only while it is still queued so a concurrent cancel wins
        claimed = (
            db.query(Job)
            .filter(Job.id == job_id, Job.status == "queued")
            .update({"status": "processing"}, synchronize_session=False)
        )
        db.commit()
        db.refresh(job)
        if not claimed:
            logger.info(f"Job {job_id} was {job.status} before processing")
            return

        token = cancel_tokens.setdefault(job_id, CancellationToken())
        logger.info(f"Processing job {job_id} (skip_summary={job.skip_summary})")

        options = PipelineOptions(
            output_dir=str(JOBS_OUTPUT_DIR),
            skip_summary=job.skip_summary,
            delay_between_chunks_ms=job.delay_ms,
        )
        # Run the pipeline in a worker thread (API keys passed directly, never stored)
        result = await run_in_threadpool(run_job_pipeline, audio_path, options, api_keys, token)

        job.chunk_count = result.chunk_count
        job.failure_count = result.failure_count
        if result.cancelled:
            job.status = "cancelled"
        elif not result.ok:
            job.status = "failed"
            job.error_message = result.error
        elif result.transcript_path is None:
            job.status = "failed"
            job.error_message = "No chunk could be transcribed"
        else:
            job.status = "completed"
            job.transcript_filename = result.transcript_path.name
            if result.summary_path:
                job.summary_filename = result.summary_path.name
        db.commit()
        logger.info(f"Job {job_id} finished with status {job.status}")

    except ConfigurationError as e:
        logger.error(f"Job {job_id} is misconfigured: {e}")
        _mark_failed(db, job, str(e))
    except Exception as e:
        logger.error(f"Job {job_id} failed: {str(e)}")
        _mark_failed(db, job, str(e))
    finally:
        # Remove API keys from cache once job is done
        api_keys_cache.pop(job_id, None)
        cancel_tokens.pop(job_id, None)


def _mark_failed(db: Session, job: Optional[Job], message: str):
    if job is None:
        return
    db.rollback()
    job.status = "failed"
    job.error_message = message
    db.commit()


async def worker():
    """Background worker to process jobs from the queue, one at a time."""
    logger.info("Worker started")
    while True:
        # Get next job from queue
        job_data = await job_queue.get()
        try:
            job_id = job_data["job_id"]
            audio_path = job_data["audio_path"]
            api_keys = job_data["api_keys"]

            # Get a new DB session for this job
            db = SessionLocal()
            try:
                await process_job(job_id, audio_path, api_keys, db)
            finally:
                db.close()

        except Exception as e:
            logger.error(f"Worker error: {e}")
        finally:
            job_queue.task_done()


def _delete_job_file(directory: Path, filename: Optional[str]):
    if not filename:
        return
    path = directory / filename
    if path.exists():
        path.unlink()
        logger.info(f"Deleted file: {path}")


def cleanup_old_jobs():
    """Clean up jobs older than the retention period."""
    logger.info(f"Running cleanup task for jobs older than {settings.job_retention_hours} hours")
    db = SessionLocal()
    try:
        cutoff_time = datetime.utcnow() - timedelta(hours=settings.job_retention_hours)
        old_jobs = (
            db.query(Job)
            .filter(Job.created_at < cutoff_time, Job.status != "processing")
            .all()
        )

        for job in old_jobs:
            logger.info(f"Cleaning up job {job.id} (created at {job.created_at})")
            _delete_job_file(JOBS_AUDIO_DIR, job.audio_filename)
            _delete_job_file(JOBS_OUTPUT_DIR, job.transcript_filename)
            _delete_job_file(JOBS_OUTPUT_DIR, job.summary_filename)
            db.delete(job)

        db.commit()
        logger.info(f"Cleanup complete: removed {len(old_jobs)} old jobs")
    except Exception as e:
        logger.error(f"Cleanup error: {e}")
        db.rollback()
    finally:
        db.close()


@app.on_event("startup")
async def startup_event():
    """Initialize database and start background worker."""
    global worker_task, scheduler

    # Initialize database
    init_db()
    logger.info("Database initialized")

    # Start background worker
    worker_task = asyncio.create_task(worker())
    logger.info("Background worker started")

    # Start cleanup scheduler (runs every 30 minutes)
    scheduler = BackgroundScheduler()
    scheduler.add_job(cleanup_old_jobs, 'interval', minutes=30)
    scheduler.start()
    logger.info("Cleanup scheduler started (runs every 30 minutes)")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    global worker_task
    for token in cancel_tokens.values():
        token.cancel()
    if scheduler:
        scheduler.shutdown(wait=False)
    if worker_task:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    logger.info("Application shutdown complete")


@app.post("/jobs")
async def create_job(
    file: UploadFile = File(...),
    skip_summary: bool = False,
    delay_ms: Optional[int] = Query(None, ge=0),
    x_assemblyai_api_key: Optional[str] = Header(None, alias="X-AssemblyAI-API-Key"),
    x_openai_api_key: Optional[str] = Header(None, alias="X-OpenAI-API-Key"),
    db: Session = Depends(get_db)
):
    """Create a new transcription job.

    Args:
        file: Audio file to transcribe
        skip_summary: Whether to skip the summary (default: False)
        delay_ms: Optional pause between chunk transcriptions
        x_assemblyai_api_key: AssemblyAI key (header, NEVER stored)
        x_openai_api_key: OpenAI key (header, NEVER stored)

    Returns:
        Job ID and initial status
    """
    api_keys = {
        "assemblyai": x_assemblyai_api_key or settings.assemblyai_api_key,
        "openai": x_openai_api_key or settings.openai_api_key,
    }
    if settings.transcription_backend == BACKEND_ASSEMBLYAI:
        if not api_keys["assemblyai"]:
            raise HTTPException(
                status_code=400,
                detail="AssemblyAI API key is required. Pass it in X-AssemblyAI-API-Key header."
            )
    elif not api_keys["openai"]:
        raise HTTPException(
            status_code=400,
            detail="OpenAI API key is required. Pass it in X-OpenAI-API-Key header."
        )

    # Generate unique job ID
    job_id = str(uuid.uuid4())

    # Save uploaded file
    audio_filename = f"{job_id}_{Path(file.filename or 'audio').name}"
    audio_path = JOBS_AUDIO_DIR / audio_filename

    try:
        with audio_path.open("wb") as buffer:
            shutil.copyfileobj(file.file, buffer)
    except OSError as e:
        logger.error(f"Failed to save audio file: {e}")
        raise HTTPException(status_code=500, detail="Failed to save audio file")

    # Create job in database (API keys are NOT stored)
    job = Job(
        id=job_id,
        status="queued",
        audio_filename=audio_filename,
        skip_summary=skip_summary,
        delay_ms=delay_ms,
        created_at=datetime.utcnow()
    )
    db.add(job)
    db.commit()

    # Store API keys in memory cache only (not persisted)
    api_keys_cache[job_id] = api_keys
    cancel_tokens[job_id] = CancellationToken()

    await job_queue.put({
        "job_id": job_id,
        "audio_path": str(audio_path),
        "api_keys": api_keys,
    })

    logger.info(f"Created job {job_id} for file {file.filename}")

    return {
        "job_id": job_id,
        "status": job.status,
        "created_at": job.created_at.isoformat()
    }


def _get_job_or_404(db: Session, job_id: str) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.get("/jobs/{job_id}")
async def get_job_status(job_id: str, db: Session = Depends(get_db)):
    """Get the status of a transcription job."""
    job = _get_job_or_404(db, job_id)

    response = {
        "job_id": job.id,
        "status": job.status,
        "created_at": job.created_at.isoformat(),
        "skip_summary": job.skip_summary,
        "chunk_count": job.chunk_count,
        "failure_count": job.failure_count,
    }

    if job.status == "failed" and job.error_message:
        response["error"] = job.error_message

    if job.status == "completed":
        response["transcript_available"] = bool(job.transcript_filename)
        response["summary_available"] = bool(job.summary_filename)

    return response


@app.get("/jobs/{job_id}/download")
async def download_artifact(
    job_id: str,
    artifact: str = Query("transcript", pattern="^(transcript|summary)$"),
    db: Session = Depends(get_db),
):
    """Download the transcript or summary of a completed job."""
    job = _get_job_or_404(db, job_id)

    if job.status != "completed":
        raise HTTPException(
            status_code=400,
            detail=f"Job is not completed. Current status: {job.status}"
        )

    filename = job.transcript_filename if artifact == "transcript" else job.summary_filename
    if not filename:
        raise HTTPException(status_code=404, detail=f"{artifact.capitalize()} not found")

    path = JOBS_OUTPUT_DIR / filename
    if not path.exists():
        raise HTTPException(status_code=404, detail=f"{artifact.capitalize()} file not found")

    return FileResponse(path=str(path), filename=filename, media_type="text/plain")


@app.delete("/jobs/{job_id}")
async def cancel_job(job_id: str, db: Session = Depends(get_db)):
    """Cancel a queued or running job.

    A running job stops before its next chunk is submitted; its chunk files
    are still cleaned up.
    """
    job = _get_job_or_404(db, job_id)

    # Conditional update so a job the worker already claimed is not overwritten
    cancelled = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == "queued")
        .update({"status": "cancelled"}, synchronize_session=False)
    )
    db.commit()
    db.refresh(job)

    if not cancelled:
        if job.status != "processing":
            raise HTTPException(
                status_code=409,
                detail=f"Job cannot be cancelled. Current status: {job.status}"
            )
        token = cancel_tokens.get(job_id)
        if token:
            token.cancel()

    logger.info(f"Cancellation requested for job {job_id}")
    return {"job_id": job.id, "status": job.status, "cancel_requested": True}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "queue_size": job_queue.qsize(),
        "backend": settings.transcription_backend,
    }
