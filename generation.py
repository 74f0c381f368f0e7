"""Veo clip generation for the question and answer scripts."""

import logging
import os
import time

from google.genai import errors as genai_errors

from errors import UpstreamError, ValidationError
from models import isoformat, utcnow

logger = logging.getLogger(__name__)

CLIP_SECONDS = 8
VEO_URL_PREFIX = "/veo/"
SCREENSHOT_URL_PREFIX = "/screenshots/"


def clip_file_name(submission_id: str, index: int) -> str:
    return f"{submission_id}_clip{index}.mp4"


def screenshot_file_name(submission_id: str) -> str:
    return f"{submission_id}_mid.png"


def capture_reference_frame(toolkit, video_path, submission_id, screenshots_dir, reuse=False):
    """Save the mid-point frame of *video_path* as ``<id>_mid.png``.

    With *reuse*, an existing screenshot is returned as-is and ``midSec`` is
    ``None``.
    """
    name = screenshot_file_name(submission_id)
    png_path = os.path.join(screenshots_dir, name)
    mid_sec = None
    if not (reuse and os.path.exists(png_path)):
        os.makedirs(screenshots_dir, exist_ok=True)
        mid_sec = toolkit.capture_mid_frame(video_path, png_path)
    return {"pngPath": png_path, "midSec": mid_sec, "screenshotUrl": SCREENSHOT_URL_PREFIX + name}


def reference_image(png_path: str) -> dict:
    """Asset reference for Veo; the SDK base64-encodes ``image_bytes`` on the wire."""
    with open(png_path, "rb") as f:
        image_bytes = f.read()
    return {
        "image": {"image_bytes": image_bytes, "mime_type": "image/png"},
        "reference_type": "asset",
    }


def build_clip_prompt(show_name: str, clip_text: str, mode: str) -> str:
    safe_show = show_name if show_name and show_name != "Unknown" else "an animated show"
    label = "QUESTION" if mode == "question" else "ANSWER"
    return (
        f"Create an 8-second animated educational insert inspired by the vibe of {safe_show}.\n"
        "Use the provided reference image to match the scene's visual style/setting.\n"
        "Tone: friendly narrator (not a specific character). Keep visuals simple and readable.\n"
        f"The narrator delivers this {label} line clearly:\n"
        f'"{clip_text}"'
    )


def generate_clip(client, model, prompt, out_file, reference_images, poll_seconds=10, sleep=time.sleep):
    """Request one clip, poll until the operation is done and download it to *out_file*."""
    try:
        operation = client.models.generate_videos(
            model=model,
            prompt=prompt,
            config={"duration_seconds": CLIP_SECONDS, "reference_images": reference_images},
        )
        while not operation.done:
            logger.info("Waiting for video generation to complete...")
            sleep(poll_seconds)
            operation = client.operations.get(operation)
    except genai_errors.APIError as exc:
        raise UpstreamError(f"Veo error {exc.code}: {exc.message}") from exc

    if getattr(operation, "error", None):
        raise UpstreamError(f"Veo operation failed: {operation.error}")
    response = operation.response
    videos = getattr(response, "generated_videos", None) or []
    video_file = videos[0].video if videos else None
    if video_file is None:
        raise UpstreamError("Veo returned no video file.")

    client.files.download(file=video_file)
    video_file.save(out_file)
    if not os.path.exists(out_file):
        raise UpstreamError(f"Veo download did not produce {out_file}.")
    return out_file


def generate_clips(submission, client, toolkit, config, sleep=time.sleep) -> dict:
    """Generate both clips for *submission*; return the record stored under ``veo``."""
    parsed = (submission.gemini or {}).get("parsed") or {}
    question = parsed.get("clip1Question") or ""
    answer = parsed.get("clip2Answer") or ""
    if not question.strip() or not answer.strip():
        raise ValidationError("Missing clips. Run analysis first.")

    frame = capture_reference_frame(
        toolkit, submission.file_path, submission.id, config["SCREENSHOTS_DIR"], reuse=True
    )
    references = [reference_image(frame["pngPath"])]
    show_name = parsed.get("show") or "Unknown"

    prompts = {
        "prompt1": build_clip_prompt(show_name, question, "question"),
        "prompt2": build_clip_prompt(show_name, answer, "answer"),
    }
    veo_dir = config["VEO_DIR"]
    os.makedirs(veo_dir, exist_ok=True)
    urls = {}
    for index, key in ((1, "prompt1"), (2, "prompt2")):
        name = clip_file_name(submission.id, index)
        logger.info("Generating clip %d for submission %s", index, submission.id)
        generate_clip(
            client,
            config["VEO_MODEL"],
            prompts[key],
            os.path.join(veo_dir, name),
            references,
            poll_seconds=config["VEO_POLL_SECONDS"],
            sleep=sleep,
        )
        urls[f"clip{index}Url"] = VEO_URL_PREFIX + name

    return {
        "updatedAt": isoformat(utcnow()),
        "referenceScreenshotUrl": frame["screenshotUrl"],
        "clip1Url": urls["clip1Url"],
        "clip2Url": urls["clip2Url"],
        "prompts": prompts,
    }
