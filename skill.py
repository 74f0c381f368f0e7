"""Voice-assistant skill: ask the quiz question and grade the spoken answer.

Deployed separately from the web app.  Environment:

    BASE_URL            backend URL, e.g. https://your-tunnel.example.com (required)
    TEST_SUBMISSION_ID  submission whose quiz is played on launch (required)

Flow: launch -> fetch the session, speak the question, ask "What's your
answer?"; AnswerIntent -> POST the utterance to the verify endpoint and speak
the verdict.
"""

import logging
import os
import re
from urllib.parse import quote

import requests
from dotenv import load_dotenv
from markupsafe import escape

load_dotenv()

logger = logging.getLogger(__name__)

ANSWER_SLOT_NAMES = ("Answer", "answer", "Response", "response")
PREVIEW_CHARS = 80


class BackendError(Exception):
    pass


def _base_url() -> str:
    base = (os.environ.get("BASE_URL") or "").strip().rstrip("/")
    if not base:
        raise BackendError(
            "Set BASE_URL in the skill environment to your backend URL "
            "(e.g. https://your-tunnel.example.com)."
        )
    return base


def _configured_submission_id() -> str:
    return (os.environ.get("TEST_SUBMISSION_ID") or "").strip()


def _call_backend(method, path, payload=None):
    """Call the backend and return its JSON body.

    Raises BackendError for non-JSON bodies (with a short preview) and for
    error statuses (with the backend's error message).
    """
    resp = requests.request(
        method,
        f"{_base_url()}{path}",
        json=payload,
        headers={"ngrok-skip-browser-warning": "1"},
    )
    try:
        data = resp.json()
    except ValueError:
        preview = re.sub(r"\s+", " ", resp.text.strip()[:PREVIEW_CHARS])
        raise BackendError(
            f"Backend returned non-JSON (status {resp.status_code}). Check BASE_URL and "
            f"that the server is running. Response starts with: {preview}"
        )
    if not resp.ok or data.get("ok") is False:
        raise BackendError(data.get("error") or f"Backend request failed ({resp.status_code}).")
    return data


def fetch_session(submission_id):
    return _call_backend("GET", f"/api/echo/session/{quote(submission_id, safe='')}")


def verify_answer(submission_id, user_answer):
    return _call_backend(
        "POST",
        "/api/echo/verify",
        {"submissionId": submission_id, "userAnswer": str(user_answer or "").strip()},
    )


def say(text, end_session=False, session_attributes=None):
    """Build a speech response; plain text is escaped and wrapped in <speak>."""
    text = str(text)
    ssml = text if text.startswith("<speak>") else f"<speak>{escape(text)}</speak>"
    response = {
        "version": "1.0",
        "response": {
            "outputSpeech": {"type": "SSML", "ssml": ssml},
            "shouldEndSession": end_session,
        },
    }
    if session_attributes is not None:
        response["sessionAttributes"] = session_attributes
    return response


def get_answer_from_request(request) -> str:
    """Read the answer slot, trying the usual slot names then any filled slot."""
    slots = ((request or {}).get("intent") or {}).get("slots") or {}
    for name in ANSWER_SLOT_NAMES:
        value = (slots.get(name) or {}).get("value")
        if value and str(value).strip():
            return str(value).strip()
    for slot in slots.values():
        value = (slot or {}).get("value")
        if value and str(value).strip():
            return str(value).strip()
    return ""


def _on_launch(attrs):
    submission_id = _configured_submission_id()
    if not submission_id:
        return say(
            "Set TEST_SUBMISSION_ID in the skill environment to your quiz submission id, then try again.",
            end_session=True,
        )
    try:
        session = fetch_session(submission_id)
    except (BackendError, requests.RequestException) as exc:
        logger.warning("Session lookup for %s failed: %s", submission_id, exc)
        return say(f"Sorry, I couldn't load that quiz. {exc}", end_session=True)

    question = session.get("question") or ""
    return say(
        f"{question} What's your answer?".strip(),
        end_session=False,
        session_attributes={**attrs, "submissionId": submission_id},
    )


def _on_answer(request, attrs):
    submission_id = attrs.get("submissionId") or _configured_submission_id()
    if not submission_id:
        return say("Open the skill again so we know which quiz you're answering.", end_session=True)

    user_answer = get_answer_from_request(request)
    if not user_answer:
        return say("I didn't catch that. What's your answer?", end_session=False, session_attributes=attrs)

    try:
        result = verify_answer(submission_id, user_answer)
    except (BackendError, requests.RequestException) as exc:
        logger.warning("Verify for %s failed: %s", submission_id, exc)
        return say(f"Sorry, something went wrong. {exc}", end_session=True)

    message = result.get("message") or ("That's right!" if result.get("correct") else "Not quite.")
    return say(message, end_session=True)


def handler(event, context=None):
    """Entry point invoked by the voice platform."""
    event = event or {}
    request = event.get("request") or {}
    attrs = (event.get("session") or {}).get("attributes") or {}

    if request.get("type") == "LaunchRequest":
        return _on_launch(attrs)
    if (request.get("intent") or {}).get("name") == "AnswerIntent":
        return _on_answer(request, attrs)
    return say(
        "What's your answer? You can say: the answer is, then your answer.",
        end_session=False,
        session_attributes=attrs,
    )
