"""Gemini analysis: find the longest pause and write the question/answer scripts.

The model is asked for exactly four labelled lines.  Parsing is lenient:
anything missing comes back empty (or ``None`` for the break window) and is
listed under ``missing`` so callers can tell "absent" from "blank".
"""

import json
import logging
import re

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from errors import UpstreamError, ValidationError
from models import isoformat, utcnow

logger = logging.getLogger(__name__)

MAX_PROMPT_SEGMENTS = 220
MAX_TRANSCRIPT_CHARS = 4000

LABELS = ("SHOW:", "LONGEST_BREAK_MS:", "CLIP_1_QUESTION:", "CLIP_2_ANSWER:")

_BREAK_RE = re.compile(r"LONGEST_BREAK_MS:\s*(\d+)\s*-\s*(\d+)\s*\((\d+)\)", re.IGNORECASE)

PROMPT_TEMPLATE = """Return ONLY the 4 lines requested below. Do NOT include reasoning, analysis, evidence, markdown, or extra lines.

OUTPUT FORMAT (EXACTLY 4 LINES):
SHOW: <show name or Unknown>
LONGEST_BREAK_MS: <breakStartMs>-<breakEndMs> (<breakDurationMs>)
CLIP_1_QUESTION: <single-line voiceover script, EXACTLY 8 seconds, ends with a clear question>
CLIP_2_ANSWER: <single-line voiceover script, EXACTLY 8 seconds, immediately answers clip 1>

RULES:
- Both scripts must be SINGLE LINE (no newline characters). Use "..." for pauses.
- Educational and based on USER_GOAL.
- Do NOT imitate/impersonate any specific copyrighted character. Use show-inspired narrator vibe only.

USER_GOAL:
{user_goal}

TRANSCRIPT_SEGMENTS (ms):
{segments}

FULL_TRANSCRIPT:
{transcript}"""


def build_prompt(user_goal: str, segments, full_transcript: str) -> str:
    compact = [
        {"startMs": s.get("startMs"), "endMs": s.get("endMs"), "text": s.get("text")}
        for s in list(segments)[:MAX_PROMPT_SEGMENTS]
    ]
    return PROMPT_TEMPLATE.format(
        user_goal=user_goal or "",
        segments=json.dumps(compact, separators=(",", ":")),
        transcript=(full_transcript or "")[:MAX_TRANSCRIPT_CHARS],
    ).strip()


def _find_line(lines, label):
    for line in lines:
        if line.upper().startswith(label):
            return line
    return None


def _strip_label(line, label):
    return re.sub(rf"^{re.escape(label)}\s*", "", line, flags=re.IGNORECASE).strip()


def parse_four_lines(raw_text) -> dict:
    """Parse the model's 4-line answer. Never raises."""
    lines = [line.strip() for line in str(raw_text or "").split("\n") if line.strip()]
    found = {label: _find_line(lines, label) for label in LABELS}

    show_line = found["SHOW:"]
    show = (_strip_label(show_line, "SHOW:") if show_line else "") or "Unknown"

    longest_break = {"breakStartMs": None, "breakEndMs": None, "breakDurationMs": None}
    match = _BREAK_RE.search(found["LONGEST_BREAK_MS:"] or "")
    if match:
        longest_break = {
            "breakStartMs": int(match.group(1)),
            "breakEndMs": int(match.group(2)),
            "breakDurationMs": int(match.group(3)),
        }

    question_line = found["CLIP_1_QUESTION:"]
    answer_line = found["CLIP_2_ANSWER:"]
    return {
        "show": show,
        "longestBreak": longest_break,
        "clip1Question": _strip_label(question_line, "CLIP_1_QUESTION:") if question_line else "",
        "clip2Answer": _strip_label(answer_line, "CLIP_2_ANSWER:") if answer_line else "",
        "missing": [label.rstrip(":") for label, line in found.items() if line is None],
    }


def make_client(api_key):
    if not api_key:
        raise UpstreamError("Missing GEMINI_API_KEY (or GOOGLE_API_KEY) in .env")
    return genai.Client(api_key=api_key)


def generate_analysis(client, model: str, prompt_text: str) -> str:
    """Call Gemini and return the concatenated response text."""
    try:
        response = client.models.generate_content(
            model=model,
            contents=prompt_text,
            config=types.GenerateContentConfig(temperature=0.3, max_output_tokens=900),
        )
    except genai_errors.APIError as exc:
        raise UpstreamError(f"Gemini error {exc.code}: {exc.message}") from exc
    return (response.text or "").strip()


def analyze_submission(submission, client, model: str) -> dict:
    """Run the analysis for *submission* and return the record to store under ``gemini``."""
    transcript = submission.transcript or {}
    segments = transcript.get("segments") or []
    if not segments:
        raise ValidationError("No timestamped transcript found. Run transcription first.")

    prompt_text = build_prompt(submission.prompt, segments, transcript.get("text") or "")
    logger.info("Analyzing submission %s with %s", submission.id, model)
    raw_text = generate_analysis(client, model, prompt_text)
    parsed = parse_four_lines(raw_text)
    if parsed["missing"]:
        logger.warning("Gemini response for %s lacked %s", submission.id, ", ".join(parsed["missing"]))
    return {
        "model": model,
        "createdAt": isoformat(utcnow()),
        "rawText": raw_text,
        "parsed": parsed,
    }
