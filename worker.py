"""Background worker thread for the one-click pipeline.

Each queued job walks its submission through transcription, analysis,
screenshot capture, clip generation and splicing.  Every stage stores its
output on the submission as soon as it finishes, so a failed job can be
re-queued and picks up where the last one stopped.
"""

import logging
import os
import threading

from analysis import analyze_submission
from generation import capture_reference_frame, clip_file_name, generate_clips
from models import db
from services import genai_client, media_toolkit, openai_client
from splice import splice_video
from store import JobStore, SubmissionStore
from transcription import transcribe_submission

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_running = False


def _has_scripts(submission):
    parsed = (submission.gemini or {}).get("parsed") or {}
    return bool(parsed.get("clip1Question")) and bool(parsed.get("clip2Answer"))


def _has_clips(submission, veo_dir):
    return all(
        os.path.exists(os.path.join(veo_dir, clip_file_name(submission.id, i)))
        for i in (1, 2)
    )


def splice_timestamp_ms(submission, toolkit):
    """Start of the detected longest break, else the middle of the video."""
    parsed = (submission.gemini or {}).get("parsed") or {}
    start = (parsed.get("longestBreak") or {}).get("breakStartMs")
    if start is not None:
        return int(start)
    return int(toolkit.probe_duration(submission.file_path) * 500)


def run_job(app, job):
    """Advance *job* through every stage. Must run inside an app context."""
    jobs = JobStore()
    submissions = SubmissionStore()
    config = app.config
    toolkit = media_toolkit()
    submission = submissions.get_or_404(job.submission_id)

    jobs.update(job, status="transcribing", progress=10, message="Transcribing audio…")
    transcript, cached = transcribe_submission(submission, toolkit, config, openai_client())
    if not cached:
        submission.transcript = transcript
        submissions.upsert(submission)

    if not _has_scripts(submission):
        jobs.update(job, status="analyzing", progress=30, message="Finding the longest pause…")
        submission.gemini = analyze_submission(submission, genai_client(), config["GEMINI_MODEL"])
        submissions.upsert(submission)

    jobs.update(job, status="capturing", progress=45, message="Capturing a reference frame…")
    capture_reference_frame(
        toolkit, submission.file_path, submission.id, config["SCREENSHOTS_DIR"], reuse=True
    )

    if not (submission.veo and _has_clips(submission, config["VEO_DIR"])):
        jobs.update(job, status="generating", progress=55, message="Generating question and answer clips…")
        submission.veo = generate_clips(submission, genai_client(), toolkit, config)
        submissions.upsert(submission)

    jobs.update(job, status="splicing", progress=85, message="Splicing clips into your video…")
    timestamp_ms = splice_timestamp_ms(submission, toolkit)
    submission.eav = splice_video(submission.file_path, timestamp_ms, config, toolkit, submission)
    submissions.upsert(submission)

    jobs.update(job, status="done", progress=100, message="Done.", result=submission.eav)
    logger.info("Job %s finished: %s", job.id, submission.eav["outputUrl"])


def process_pending_jobs(app):
    """Worker loop: run queued jobs one at a time, oldest first."""
    jobs = JobStore()
    with app.app_context():
        while True:
            job = jobs.next_queued()
            if job is None:
                break
            try:
                run_job(app, job)
            except Exception as exc:
                logger.exception("Job %s failed", job.id)
                db.session.rollback()
                jobs.update(job, status="failed", error=str(exc), message=str(exc))
            finally:
                db.session.remove()


def has_queued_jobs(app):
    with app.app_context():
        try:
            return JobStore().next_queued() is not None
        finally:
            db.session.remove()


def _process_jobs(app):
    global _running
    try:
        process_pending_jobs(app)
    finally:
        with _lock:
            _running = False
    # A job enqueued after the last poll but before the flag reset saw a running worker.
    if has_queued_jobs(app):
        start_processing(app)


def start_processing(app):
    """Spawn the worker thread if it isn't already running."""
    global _running
    with _lock:
        if _running:
            return
        _running = True
    t = threading.Thread(target=_process_jobs, args=(app,), daemon=True)
    t.start()
