"""Environment-driven settings loaded into ``app.config``."""

import os
import re

from dotenv import load_dotenv

from media import find_tool

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_dir(name: str, default: str) -> str:
    return os.path.abspath(os.environ.get(name) or os.path.join(BASE_DIR, default))


def _ffprobe_for(ffmpeg_bin: str) -> str:
    """Derive the ffprobe path from an explicit ffmpeg path (same folder, same suffix)."""
    if re.search(r"ffmpeg(\.exe)?$", ffmpeg_bin, re.IGNORECASE):
        return re.sub(r"ffmpeg(\.exe)?$", r"ffprobe\1", ffmpeg_bin, flags=re.IGNORECASE)
    return find_tool("ffprobe")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    UPLOAD_DIR = _env_dir("UPLOAD_DIR", "uploads")
    DATA_DIR = _env_dir("DATA_DIR", "data")
    TMP_DIR = _env_dir("TMP_DIR", "tmp")
    VEO_DIR = _env_dir("VEO_DIR", "veo_outputs")
    SCREENSHOTS_DIR = _env_dir("SCREENSHOTS_DIR", "screenshots")
    EAVS_DIR = _env_dir("EAVS_DIR", "EAVs")
    LEGACY_CLIPS_DIR = _env_dir("LEGACY_CLIPS_DIR", "temp")
    CLIENT_DIR = _env_dir("CLIENT_DIR", "client")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "sqlite:///" + os.path.join(DATA_DIR, "submissions.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    FFMPEG_BIN = os.environ.get("FFMPEG_BIN") or find_tool("ffmpeg")
    FFPROBE_BIN = os.environ.get("FFPROBE_BIN") or _ffprobe_for(FFMPEG_BIN)
    WHISPER_BIN = os.environ.get("WHISPER_BIN", "whisper-cli")
    WHISPER_MODEL_PATH = os.environ.get("WHISPER_MODEL_PATH", "")
    TRANSCRIBE_PROVIDER = os.environ.get("TRANSCRIBE_PROVIDER", "whisper.cpp")

    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
    VEO_MODEL = os.environ.get("VEO_MODEL", "veo-3.1-generate-preview")
    VEO_POLL_SECONDS = float(os.environ.get("VEO_POLL_SECONDS", "10"))

    MAX_UPLOAD_BYTES = 25 * 1024 * 1024
    # Whole-request cap; the per-file check happens after the upload is saved.
    MAX_CONTENT_LENGTH = MAX_UPLOAD_BYTES + 1024 * 1024
    ALLOWED_MIME_TYPES = frozenset({"video/mp4", "video/webm", "video/quicktime"})

    CLIP_DURATION_MS = 8000
    ANSWER_OVERLAP_THRESHOLD = float(os.environ.get("ANSWER_OVERLAP_THRESHOLD", "0.5"))
