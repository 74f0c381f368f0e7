"""Insert the two generated clips into the original video.

The original is split at the requested timestamp and the four parts
[partA, clip1, clip2, partB] are normalised to the original's geometry and
frame rate before concatenation.  Parts without audio get a silent track so
the concat filter always sees matching (video, audio) pairs.
"""

import logging
import os
import secrets
import time

from errors import NotFoundError
from generation import CLIP_SECONDS, clip_file_name
from models import isoformat, utcnow

logger = logging.getLogger(__name__)

EAVS_URL_PREFIX = "/eavs/"
LEGACY_CLIP_NAMES = ("v1.mp4", "v2.mp4")

SAMPLE_RATE = 48000


def output_file_name() -> str:
    return f"spliced_{int(time.time() * 1000)}_{secrets.token_urlsafe(8)[:10]}.mp4"


def resolve_clip_paths(submission, veo_dir, legacy_dir):
    """Find the two clips to insert.

    Order: the submission's expected clip files, then files named after the
    stored clip URLs, then the legacy ``v1.mp4``/``v2.mp4`` pair.
    """
    candidates = []
    if submission is not None:
        candidates.append((
            os.path.join(veo_dir, clip_file_name(submission.id, 1)),
            os.path.join(veo_dir, clip_file_name(submission.id, 2)),
        ))
        veo = submission.veo or {}
        if veo.get("clip1Url") and veo.get("clip2Url"):
            candidates.append((
                os.path.join(veo_dir, os.path.basename(veo["clip1Url"])),
                os.path.join(veo_dir, os.path.basename(veo["clip2Url"])),
            ))
    candidates.append(tuple(os.path.join(legacy_dir, name) for name in LEGACY_CLIP_NAMES))

    for clip1, clip2 in candidates:
        if os.path.exists(clip1) and os.path.exists(clip2):
            return clip1, clip2
    raise NotFoundError(
        "AI clips not found. Generate clips first, or provide legacy clips "
        f"at {os.path.join(legacy_dir, LEGACY_CLIP_NAMES[0])} and {LEGACY_CLIP_NAMES[1]}."
    )


def _video_chain(label_in, label_out, props):
    w, h = props.width, props.height
    return (
        f"[{label_in}]scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={props.fps:.3f},"
        f"format=yuv420p,setpts=PTS-STARTPTS[{label_out}]"
    )


def _audio_chain(label_in, label_out):
    return (
        f"[{label_in}]aformat=sample_fmts=fltp:sample_rates={SAMPLE_RATE}:channel_layouts=stereo,"
        f"asetpts=PTS-STARTPTS[{label_out}]"
    )


def _silence(label_out, duration=None):
    trim = f",atrim=0:{duration}" if duration is not None else ""
    return f"anullsrc=r={SAMPLE_RATE}:cl=stereo{trim},asetpts=PTS-STARTPTS[{label_out}]"


def build_filtergraph(ts_sec, props, has_audio, clip_seconds=CLIP_SECONDS, tail_seconds=None):
    """Filtergraph for inputs 0=original, 1=clip1, 2=clip2.

    *has_audio* is a 3-tuple of booleans for those inputs.  *tail_seconds*
    bounds the silent track of part B when the original has no audio.
    """
    original_audio, clip1_audio, clip2_audio = has_audio
    parts = []

    parts.append(f"[0:v]trim=0:{ts_sec},setpts=PTS-STARTPTS[v0raw]")
    parts.append(_video_chain("v0raw", "v0", props))
    if original_audio:
        parts.append(f"[0:a]atrim=0:{ts_sec},asetpts=PTS-STARTPTS[a0raw]")
        parts.append(_audio_chain("a0raw", "a0"))
    else:
        parts.append(_silence("a0", ts_sec))

    parts.append(f"[0:v]trim={ts_sec},setpts=PTS-STARTPTS[v3raw]")
    parts.append(_video_chain("v3raw", "v3", props))
    if original_audio:
        parts.append(f"[0:a]atrim={ts_sec},asetpts=PTS-STARTPTS[a3raw]")
        parts.append(_audio_chain("a3raw", "a3"))
    else:
        parts.append(_silence("a3", tail_seconds))

    for index, present in ((1, clip1_audio), (2, clip2_audio)):
        parts.append(_video_chain(f"{index}:v", f"v{index}", props))
        if present:
            parts.append(_audio_chain(f"{index}:a", f"a{index}"))
        else:
            parts.append(_silence(f"a{index}", clip_seconds))

    parts.append("[v0][a0][v1][a1][v2][a2][v3][a3]concat=n=4:v=1:a=1[v][a]")
    return ";".join(parts)


def splice(toolkit, original_path, timestamp_ms, clip1_path, clip2_path, output_path,
           clip_seconds=CLIP_SECONDS):
    """Write [original[:ts], clip1, clip2, original[ts:]] to *output_path*."""
    ts_sec = max(0, int(timestamp_ms)) / 1000
    props = toolkit.probe_video_props(original_path)
    has_audio = (
        toolkit.has_audio_stream(original_path),
        toolkit.has_audio_stream(clip1_path),
        toolkit.has_audio_stream(clip2_path),
    )
    tail_seconds = None
    if not has_audio[0]:
        # Silent tracks are generated, so they must stop where the video does.
        duration = toolkit.probe_duration(original_path)
        ts_sec = min(ts_sec, duration)
        tail_seconds = max(0.0, duration - ts_sec)

    graph = build_filtergraph(ts_sec, props, has_audio, clip_seconds, tail_seconds)
    logger.info(
        "Splicing %s at %sms (%dx%d @ %.3f fps) -> %s",
        original_path, timestamp_ms, props.width, props.height, props.fps, output_path,
    )
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    toolkit.ffmpeg([
        "-i", original_path,
        "-i", clip1_path,
        "-i", clip2_path,
        "-filter_complex", graph,
        "-map", "[v]",
        "-map", "[a]",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-crf", "23",
        "-c:a", "aac",
        "-b:a", "192k",
        "-movflags", "+faststart",
        "-y",
        output_path,
    ])
    return output_path


def splice_video(video_path, timestamp_ms, config, toolkit, submission=None):
    """Splice clips into *video_path* at *timestamp_ms*; return the ``eav`` record.

    Without a *submission* only the legacy clip pair can be used.
    """
    clip1, clip2 = resolve_clip_paths(submission, config["VEO_DIR"], config["LEGACY_CLIPS_DIR"])
    name = output_file_name()
    output = os.path.join(config["EAVS_DIR"], name)
    splice(
        toolkit,
        video_path,
        timestamp_ms,
        clip1,
        clip2,
        output,
        clip_seconds=config["CLIP_DURATION_MS"] / 1000,
    )
    return {
        "timestampMs": timestamp_ms,
        "output": output,
        "outputFileName": name,
        "outputUrl": EAVS_URL_PREFIX + name,
        "createdAt": isoformat(utcnow()),
    }
