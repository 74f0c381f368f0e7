"""Per-app collaborators: the media toolkit and the Gemini/OpenAI clients."""

from flask import current_app

from analysis import make_client
from media import MediaToolkit

EXTENSION_KEY = "video_quiz"


def init_services(app, media=None, genai_client=None, openai_client=None):
    """Attach collaborators to *app*; tests pass fakes here."""
    if media is None:
        media = MediaToolkit(app.config["FFMPEG_BIN"], app.config["FFPROBE_BIN"])
    app.extensions[EXTENSION_KEY] = {
        "media": media,
        "genai": genai_client,
        "openai": openai_client,
    }


def media_toolkit():
    return current_app.extensions[EXTENSION_KEY]["media"]


def genai_client():
    """The Gemini client, created on first use so a missing key only fails the stages that need it."""
    services = current_app.extensions[EXTENSION_KEY]
    if services["genai"] is None:
        services["genai"] = make_client(current_app.config["GEMINI_API_KEY"])
    return services["genai"]


def openai_client():
    return current_app.extensions[EXTENSION_KEY]["openai"]
