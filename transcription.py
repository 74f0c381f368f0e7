"""Speech-to-text for uploaded videos.

Two providers produce the same ``{text, segments}`` shape: a local
whisper.cpp binary (default) and the OpenAI Whisper API.  Segments are
``{"startMs", "endMs", "text"}`` dicts in subtitle order.
"""

import logging
import os
import re
import secrets
import time

from openai import OpenAI

from errors import PipelineError, ValidationError
from models import isoformat, utcnow

logger = logging.getLogger(__name__)

PROVIDERS = ("whisper.cpp", "openai")

_TIME_RE = re.compile(r"(\d\d:\d\d:\d\d[.,]\d\d\d)\s*-->\s*(\d\d:\d\d:\d\d[.,]\d\d\d)")


def timestamp_to_ms(stamp: str) -> int:
    """Convert ``HH:MM:SS,mmm`` (or ``HH:MM:SS.mmm``) to integer milliseconds."""
    hh, mm, rest = stamp.split(":")
    ss, ms = rest.replace(".", ",").split(",")
    return int(hh) * 3600000 + int(mm) * 60000 + int(ss) * 1000 + int(ms)


def format_srt_time(ms: int) -> str:
    """Convert milliseconds to SRT timestamp format (HH:MM:SS,mmm)."""
    ms = max(0, int(ms))
    hrs, ms = divmod(ms, 3600000)
    mins, ms = divmod(ms, 60000)
    secs, ms = divmod(ms, 1000)
    return f"{hrs:02d}:{mins:02d}:{secs:02d},{ms:03d}"


def parse_srt(srt: str) -> list[dict]:
    """Parse SRT text into timestamped segments.

    Blocks without an index line, a timing line and at least one text line
    are skipped.
    """
    segments = []
    for block in re.split(r"\n\s*\n", srt.replace("\r\n", "\n")):
        lines = [line.strip() for line in block.strip().split("\n") if line.strip()]
        if len(lines) < 3:
            continue
        match = _TIME_RE.search(lines[1])
        if not match:
            continue
        segments.append({
            "startMs": timestamp_to_ms(match.group(1)),
            "endMs": timestamp_to_ms(match.group(2)),
            "text": " ".join(lines[2:]),
        })
    return segments


def segments_to_text(segments) -> str:
    """Join segment text into a single plain-text string."""
    return "\n".join(seg["text"].strip() for seg in segments)


def segments_to_srt(segments) -> str:
    blocks = []
    for i, seg in enumerate(segments, start=1):
        start = format_srt_time(seg["startMs"])
        end = format_srt_time(seg["endMs"])
        blocks.append(f"{i}\n{start} --> {end}\n{seg['text'].strip()}\n")
    return "\n".join(blocks)


def _temp_base(tmp_dir: str) -> str:
    os.makedirs(tmp_dir, exist_ok=True)
    return os.path.join(tmp_dir, f"a_{int(time.time() * 1000)}_{secrets.token_hex(3)}")


def _read_if_exists(path: str) -> str:
    if not os.path.exists(path):
        return ""
    with open(path, encoding="utf-8") as f:
        return f.read()


def _remove_quietly(*paths):
    for path in paths:
        try:
            os.unlink(path)
        except OSError:
            pass


def transcribe_with_whisper_cpp(video_path, toolkit, whisper_bin, model_path, tmp_dir):
    """Run whisper.cpp on the audio of *video_path*; return ``(text, segments)``."""
    if not model_path:
        raise PipelineError("Missing WHISPER_MODEL_PATH in .env.")
    if not os.path.exists(model_path):
        raise PipelineError(f"Model not found at: {model_path}")

    base = _temp_base(tmp_dir)
    wav_path = f"{base}.wav"
    txt_path = f"{base}.txt"
    srt_path = f"{base}.srt"
    try:
        toolkit.extract_audio(video_path, wav_path)
        toolkit.run_tool(whisper_bin, ["-m", model_path, "-f", wav_path, "-otxt", "-osrt", "-of", base])
        text = _read_if_exists(txt_path).strip()
        srt = _read_if_exists(srt_path)
        segments = parse_srt(srt) if srt else []
    finally:
        _remove_quietly(wav_path, txt_path, srt_path)
    return text, segments


def transcribe_with_openai(video_path, toolkit, tmp_dir, client=None):
    """Send the audio of *video_path* to the OpenAI Whisper API."""
    wav_path = f"{_temp_base(tmp_dir)}.wav"
    try:
        toolkit.extract_audio(video_path, wav_path)
        client = client or OpenAI()
        with open(wav_path, "rb") as f:
            response = client.audio.transcriptions.create(
                model="whisper-1",
                file=f,
                response_format="verbose_json",
            )
    finally:
        _remove_quietly(wav_path)

    segments = [
        {
            "startMs": int(round(seg.start * 1000)),
            "endMs": int(round(seg.end * 1000)),
            "text": seg.text.strip(),
        }
        for seg in (response.segments or [])
    ]
    return (response.text or "").strip(), segments


def has_transcript_text(submission) -> bool:
    return bool(((submission.transcript or {}).get("text") or "").strip())


def transcribe_submission(submission, toolkit, config, openai_client=None):
    """Transcribe *submission* unless it already has transcript text.

    Returns ``(transcript, cached)``; the caller persists the transcript.
    """
    if has_transcript_text(submission):
        return submission.transcript, True

    provider = config.get("TRANSCRIBE_PROVIDER", "whisper.cpp")
    logger.info("Transcribing submission %s with %s", submission.id, provider)
    if provider == "openai":
        text, segments = transcribe_with_openai(
            submission.file_path, toolkit, config["TMP_DIR"], client=openai_client
        )
    elif provider == "whisper.cpp":
        text, segments = transcribe_with_whisper_cpp(
            submission.file_path,
            toolkit,
            config["WHISPER_BIN"],
            config["WHISPER_MODEL_PATH"],
            config["TMP_DIR"],
        )
    else:
        raise ValidationError(f"Unknown TRANSCRIBE_PROVIDER: {provider}")

    transcript = {
        "provider": provider,
        "text": text,
        "segments": segments,
        "createdAt": isoformat(utcnow()),
    }
    logger.info("Transcribed submission %s: %d segments", submission.id, len(segments))
    return transcript, False
