"""Flask application for the video quiz splicer."""

import logging
import os
import re
import time

from flask import Blueprint, Flask, Response, current_app, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.utils import secure_filename

from analysis import analyze_submission
from config import Config
from errors import NotFoundError, PayloadTooLarge, PipelineError, ValidationError
from generation import capture_reference_frame, generate_clips
from models import db, new_id
from services import genai_client, init_services, media_toolkit, openai_client
from splice import splice_video
from store import JobStore, SubmissionStore
from transcription import has_transcript_text, segments_to_srt, segments_to_text, transcribe_submission
from verification import build_session, verify_answer
from worker import start_processing

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)

submissions = SubmissionStore()
jobs = JobStore()

ASSET_DIRS = {
    "veo": "VEO_DIR",
    "screenshots": "SCREENSHOTS_DIR",
    "eavs": "EAVS_DIR",
}


def create_app(overrides=None, media=None, genai_client=None, openai_client=None):
    app = Flask(__name__, static_folder=None)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    for key in ("UPLOAD_DIR", "DATA_DIR", "TMP_DIR", "VEO_DIR", "SCREENSHOTS_DIR", "EAVS_DIR"):
        os.makedirs(app.config[key], exist_ok=True)

    CORS(app)
    db.init_app(app)
    init_services(app, media=media, genai_client=genai_client, openai_client=openai_client)
    app.register_blueprint(bp)
    _register_error_handlers(app)

    with app.app_context():
        db.create_all()

    return app


def _register_error_handlers(app):

    @app.errorhandler(PipelineError)
    def handle_pipeline_error(exc):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, exc.message)
        return jsonify(ok=False, error=exc.message), exc.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(_exc):
        return jsonify(ok=False, error=_too_large_message()), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify(ok=False, error=exc.description), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify(ok=False, error=str(exc) or "Server error."), 500


def _too_large_message():
    mb = current_app.config["MAX_UPLOAD_BYTES"] / (1024 * 1024)
    return f"File must be under {mb:g} MB."


def _remove_quietly(path):
    if path and os.path.exists(path):
        try:
            os.unlink(path)
        except OSError:
            logger.warning("Could not remove %s", path)


def _save_upload(file_storage):
    """Validate and store an uploaded video; return ``(stored_name, path, size)``."""
    if file_storage is None or not file_storage.filename:
        raise ValidationError("Video file is required.")
    if file_storage.mimetype not in current_app.config["ALLOWED_MIME_TYPES"]:
        raise ValidationError("Only mp4, webm, or mov videos are allowed.")

    safe_name = secure_filename(file_storage.filename) or "video"
    stored_name = f"{int(time.time() * 1000)}_{new_id(10)}_{safe_name}"
    dest = os.path.join(current_app.config["UPLOAD_DIR"], stored_name)
    file_storage.save(dest)

    size = os.path.getsize(dest)
    if size >= current_app.config["MAX_UPLOAD_BYTES"]:
        _remove_quietly(dest)
        raise PayloadTooLarge(_too_large_message())
    return stored_name, dest, size


def _require_video_on_disk(submission):
    if not submission.file_path or not os.path.exists(submission.file_path):
        raise NotFoundError("Video file missing on disk.")


@bp.route("/api/health")
def health():
    return jsonify(ok=True)


@bp.route("/api/upload", methods=["POST"])
def upload():
    prompt = (request.form.get("prompt") or "").strip()
    if not prompt:
        raise ValidationError("Prompt is required.")

    video = request.files.get("video")
    stored_name, path, size = _save_upload(video)
    submission = submissions.create(
        prompt=prompt,
        original_name=video.filename,
        stored_name=stored_name,
        file_path=path,
        size_bytes=size,
        mimetype=video.mimetype,
    )
    logger.info("Stored upload %s as submission %s (%d bytes)", video.filename, submission.id, size)
    return jsonify(ok=True, submission=submission.to_dict())


@bp.route("/api/submissions")
def list_submissions():
    return jsonify(ok=True, submissions=[s.to_dict() for s in submissions.list()])


@bp.route("/api/submissions/<submission_id>")
def get_submission(submission_id):
    return jsonify(ok=True, submission=submissions.get_or_404(submission_id).to_dict())


@bp.route("/api/transcribe/<submission_id>", methods=["POST"])
def transcribe(submission_id):
    submission = submissions.get_or_404(submission_id)
    if not has_transcript_text(submission):
        _require_video_on_disk(submission)
    transcript, cached = transcribe_submission(
        submission, media_toolkit(), current_app.config, openai_client()
    )
    if not cached:
        submission.transcript = transcript
        submissions.upsert(submission)
    return jsonify(ok=True, transcript=transcript, cached=cached)


@bp.route("/api/download/<submission_id>/<file_type>")
def download_transcript(submission_id, file_type):
    submission = submissions.get_or_404(submission_id)
    transcript = submission.transcript or {}
    segments = transcript.get("segments") or []
    if file_type == "txt" and (transcript.get("text") or segments):
        body = transcript.get("text") or segments_to_text(segments)
        mimetype = "text/plain"
    elif file_type == "srt" and segments:
        body = segments_to_srt(segments)
        mimetype = "application/x-subrip"
    else:
        raise NotFoundError("Transcript not available.")
    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={submission.id}_transcript.{file_type}"},
    )


@bp.route("/api/screenshot/<submission_id>")
def screenshot(submission_id):
    submission = submissions.get_or_404(submission_id)
    _require_video_on_disk(submission)
    frame = capture_reference_frame(
        media_toolkit(), submission.file_path, submission.id, current_app.config["SCREENSHOTS_DIR"]
    )
    return jsonify(ok=True, midSec=frame["midSec"], screenshotUrl=frame["screenshotUrl"])


@bp.route("/api/gemini/analyze/<submission_id>", methods=["POST"])
def gemini_analyze(submission_id):
    client = genai_client()
    submission = submissions.get_or_404(submission_id)
    submission.gemini = analyze_submission(submission, client, current_app.config["GEMINI_MODEL"])
    submissions.upsert(submission)
    return jsonify(ok=True, gemini=submission.gemini)


@bp.route("/api/veo/generate/<submission_id>", methods=["POST"])
def veo_generate(submission_id):
    submission = submissions.get_or_404(submission_id)
    _require_video_on_disk(submission)
    veo = generate_clips(submission, genai_client(), media_toolkit(), current_app.config)
    submission.veo = veo
    submissions.upsert(submission)
    return jsonify(ok=True, veo=veo)


def _parse_timestamp(raw):
    if raw is None or not str(raw).strip():
        raise ValidationError("timestamp is required.")
    match = re.match(r"^\s*(-?\d+)", str(raw))
    if not match or int(match.group(1)) < 0:
        raise ValidationError("timestamp must be a non-negative integer (ms).")
    return int(match.group(1))


@bp.route("/api/splice", methods=["POST"])
def splice_route():
    submission_id = (request.form.get("submissionId") or "").strip()
    video = request.files.get("video")
    adhoc_path = None
    try:
        timestamp_ms = _parse_timestamp(request.form.get("timestamp"))

        submission = None
        if submission_id:
            submission = submissions.get_or_404(submission_id)
            if not submission.file_path or not os.path.exists(submission.file_path):
                raise NotFoundError("Stored video file not found.")
            video_path = submission.file_path
        elif video is not None and video.filename:
            _, adhoc_path, _ = _save_upload(video)
            video_path = adhoc_path
        else:
            raise ValidationError("Either upload a video or provide a submissionId.")

        eav = splice_video(video_path, timestamp_ms, current_app.config, media_toolkit(), submission)
        if submission is not None:
            submission.eav = eav
            submissions.upsert(submission)
    finally:
        _remove_quietly(adhoc_path)

    return jsonify(
        ok=True,
        output=eav["output"],
        outputFileName=eav["outputFileName"],
        outputUrl=eav["outputUrl"],
        timestampMs=eav["timestampMs"],
    )


@bp.route("/api/pipeline/<submission_id>", methods=["POST"])
def start_pipeline(submission_id):
    submission = submissions.get_or_404(submission_id)
    _require_video_on_disk(submission)
    job = jobs.create(submission.id)
    start_processing(current_app._get_current_object())
    return jsonify(ok=True, jobId=job.id, job=job.to_dict()), 202


@bp.route("/api/jobs/<job_id>")
def get_job(job_id):
    return jsonify(ok=True, job=jobs.get_or_404(job_id).to_dict())


@bp.route("/api/echo/session/<submission_id>")
def echo_session(submission_id):
    submission = submissions.get_or_404(submission_id)
    session = build_session(submission, current_app.config["CLIP_DURATION_MS"])
    return jsonify(ok=True, **session)


@bp.route("/api/echo/verify", methods=["POST"])
def echo_verify():
    body = request.get_json(silent=True) or request.form
    submission_id = str(body.get("submissionId") or "").strip()
    user_answer = str(body.get("userAnswer") or "").strip()
    if not submission_id:
        raise ValidationError("submissionId is required.")
    if not user_answer:
        raise ValidationError("userAnswer is required.")

    submission = submissions.get_or_404(submission_id)
    parsed = (submission.gemini or {}).get("parsed") or {}
    expected = str(body.get("expectedAnswer") or parsed.get("clip2Answer") or "").strip()
    if not expected:
        raise ValidationError("No expected answer for this submission. Run analysis first.")

    result = verify_answer(expected, user_answer, current_app.config["ANSWER_OVERLAP_THRESHOLD"])
    logger.info("Verified answer for %s: correct=%s", submission.id, result.correct)
    return jsonify(ok=True, correct=result.correct, message=result.message, expectedAnswer=expected)


@bp.route("/veo/<path:filename>", defaults={"kind": "veo"})
@bp.route("/screenshots/<path:filename>", defaults={"kind": "screenshots"})
@bp.route("/eavs/<path:filename>", defaults={"kind": "eavs"})
def generated_asset(kind, filename):
    return send_from_directory(current_app.config[ASSET_DIRS[kind]], filename)


@bp.route("/")
def index():
    return send_from_directory(current_app.config["CLIENT_DIR"], "index.html")


@bp.route("/<path:filename>")
def client_file(filename):
    return send_from_directory(current_app.config["CLIENT_DIR"], filename)


if __name__ == "__main__":
    create_app().run(debug=True, port=int(os.environ.get("PORT", "3000")))
