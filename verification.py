"""Grading spoken answers and building the quiz session for the voice skill."""

import re
import string
from dataclasses import dataclass

from errors import ValidationError

STOPWORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "had",
    "her", "was", "one", "our", "out", "has", "his", "how", "its", "may", "who",
    "did", "get", "got", "let", "she", "too", "use", "that", "this", "with",
    "from", "they", "them", "then", "than", "what", "when", "where", "which",
    "your", "have", "will", "just", "into", "about", "answer", "because", "think",
})

_PUNCT_TABLE = str.maketrans({ch: " " for ch in string.punctuation})


def normalize_answer(text) -> str:
    """Lower-case, replace punctuation with spaces, collapse whitespace, trim."""
    text = str(text or "").lower().translate(_PUNCT_TABLE)
    return re.sub(r"\s+", " ", text).strip()


def significant_words(text) -> list[str]:
    return [w for w in normalize_answer(text).split() if len(w) > 2 and w not in STOPWORDS]


@dataclass
class VerificationResult:
    correct: bool
    message: str


def lead_phrase(text) -> str:
    """Opening sentence of a narrated answer: "Photosynthesis" in "Photosynthesis! Leaves ..."."""
    return re.split(r"[.!?]", str(text or ""), maxsplit=1)[0]


def _matches(expected_norm, user_norm, threshold):
    if not expected_norm or not user_norm:
        return False
    if expected_norm == user_norm:
        return True
    if f" {expected_norm} " in f" {user_norm} ":
        return True
    keywords = set(significant_words(expected_norm))
    if not keywords:
        return False
    said = set(user_norm.split())
    return len(keywords & said) / len(keywords) >= threshold


def verify_answer(expected, user_answer, threshold=0.5) -> VerificationResult:
    """Judge *user_answer* against *expected*.

    Correct when the normalised texts are equal, when the expected phrase
    appears whole inside the user's answer, or when at least *threshold* of the
    expected answer's significant words occur in the user's answer.  Each test
    is tried against the whole expected answer and against its opening
    sentence, since generated answers are narrations that lead with the
    answer itself.
    """
    user_norm = normalize_answer(user_answer)
    candidates = {normalize_answer(expected), normalize_answer(lead_phrase(expected))}
    correct = any(_matches(candidate, user_norm, threshold) for candidate in candidates)

    if correct:
        return VerificationResult(True, "That's right!")
    return VerificationResult(False, f"Not quite. The answer was: {expected}")


def build_session(submission, clip_duration_ms=8000) -> dict:
    """Question, expected answer and playback timeline for *submission*.

    The splice point is the stored splice timestamp, else the start of the
    detected longest break.
    """
    parsed = (submission.gemini or {}).get("parsed") or {}
    question = parsed.get("clip1Question") or ""
    answer = parsed.get("clip2Answer") or ""
    if not question or not answer:
        raise ValidationError("No question/answer for this submission. Run analysis first.")

    splice_ms = (submission.eav or {}).get("timestampMs")
    if splice_ms is None:
        splice_ms = (parsed.get("longestBreak") or {}).get("breakStartMs")
    if splice_ms is None:
        raise ValidationError("No splice timestamp for this submission. Run the pipeline first.")

    splice_ms = int(splice_ms)
    return {
        "submissionId": submission.id,
        "show": parsed.get("show") or "Unknown",
        "question": question,
        "expectedAnswer": answer,
        "timeline": {
            "spliceTimestampMs": splice_ms,
            "questionStartMs": splice_ms,
            "questionEndMs": splice_ms + clip_duration_ms,
            "answerStartMs": splice_ms + clip_duration_ms,
            "answerEndMs": splice_ms + 2 * clip_duration_ms,
            "clipDurationMs": clip_duration_ms,
        },
    }
