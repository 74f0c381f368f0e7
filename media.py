"""Thin wrappers around ffmpeg/ffprobe.

Every call goes through :func:`run`, which raises :class:`CommandError` on a
non-zero exit instead of returning a status.  The :class:`MediaToolkit` keeps
the binary paths so the rest of the app never builds a command line itself.
"""

import glob
import json
import logging
import math
import os
import shutil
import subprocess
from dataclasses import dataclass

from errors import CommandError, UpstreamError

logger = logging.getLogger(__name__)

# WinGet installs ffmpeg here; shutil.which() misses it when the shell hasn't reloaded PATH.
_WINGET_FFMPEG_GLOB = os.path.join(
    os.environ.get("LOCALAPPDATA", ""),
    "Microsoft", "WinGet", "Packages", "Gyan.FFmpeg*", "ffmpeg-*", "bin",
)

DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_FPS = 30.0


def find_tool(name: str) -> str:
    """Return the path to *name* (e.g. 'ffmpeg'), searching PATH then WinGet."""
    found = shutil.which(name)
    if found:
        return found
    for bin_dir in glob.glob(_WINGET_FFMPEG_GLOB):
        candidate = os.path.join(bin_dir, f"{name}.exe")
        if os.path.isfile(candidate):
            return candidate
    return name  # fall back to bare name; run() reports it if missing


def run(cmd: str, args: list[str]) -> str:
    """Run *cmd* with *args* and return its stdout.

    Raises CommandError embedding the exit code and stderr when the process
    exits non-zero or cannot be started.
    """
    try:
        result = subprocess.run(
            [cmd, *args],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        raise CommandError(cmd, "ENOENT", f"{cmd} not found. Install it and ensure it is on your PATH.")
    if result.returncode != 0:
        logger.warning("%s exited %s: %s", cmd, result.returncode, result.stderr.strip()[:500])
        raise CommandError(cmd, result.returncode, result.stderr)
    return result.stdout


def parse_frame_rate(value) -> float:
    """Turn an ffprobe ``r_frame_rate`` like ``30000/1001`` into a float.

    Falls back to 30 when the fraction is malformed or outside (0, 240).
    """
    if not isinstance(value, str) or "/" not in value:
        return DEFAULT_FPS
    num, _, den = value.partition("/")
    try:
        fps = float(num) / float(den)
    except (ValueError, ZeroDivisionError):
        return DEFAULT_FPS
    if not math.isfinite(fps) or fps <= 0 or fps >= 240:
        return DEFAULT_FPS
    return fps


@dataclass
class VideoProps:
    width: int
    height: int
    fps: float


class MediaToolkit:
    """Probe, extract and transcode through ffmpeg/ffprobe."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe"):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    def run_tool(self, cmd: str, args: list[str]) -> str:
        """Run another external binary (e.g. whisper-cli) the same way."""
        return run(cmd, args)

    def ffmpeg(self, args: list[str]) -> str:
        return run(self.ffmpeg_bin, ["-hide_banner", "-loglevel", "error", *args])

    def ffprobe(self, args: list[str]) -> str:
        return run(self.ffprobe_bin, ["-v", "error", *args])

    def probe_duration(self, path: str) -> float:
        """Duration of *path* in seconds."""
        out = self.ffprobe([
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        ])
        try:
            duration = float(out.strip())
        except ValueError:
            duration = float("nan")
        if not math.isfinite(duration) or duration <= 0:
            raise UpstreamError("Could not read video duration (ffprobe).")
        return duration

    def probe_video_props(self, path: str) -> VideoProps:
        out = self.ffprobe([
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height,r_frame_rate",
            "-of", "json",
            path,
        ])
        try:
            streams = json.loads(out or "{}").get("streams") or [{}]
        except ValueError:
            streams = [{}]
        stream = streams[0]
        return VideoProps(
            width=int(stream.get("width") or DEFAULT_WIDTH),
            height=int(stream.get("height") or DEFAULT_HEIGHT),
            fps=parse_frame_rate(stream.get("r_frame_rate")),
        )

    def has_audio_stream(self, path: str) -> bool:
        """True if *path* has any audio stream; probe failures count as no audio."""
        try:
            out = self.ffprobe([
                "-select_streams", "a",
                "-show_entries", "stream=index",
                "-of", "csv=p=0",
                path,
            ])
        except CommandError:
            return False
        return bool(out.strip())

    def extract_audio(self, video_path: str, wav_path: str) -> str:
        """Write mono 16 kHz 16-bit PCM audio of *video_path* to *wav_path*."""
        self.ffmpeg([
            "-i", video_path,
            "-vn",
            "-ac", "1",
            "-ar", "16000",
            "-c:a", "pcm_s16le",
            wav_path,
        ])
        return wav_path

    def capture_frame(self, video_path: str, png_path: str, at_sec: float) -> str:
        self.ffmpeg([
            "-ss", str(at_sec),
            "-i", video_path,
            "-frames:v", "1",
            "-q:v", "2",
            png_path,
            "-y",
        ])
        return png_path

    def capture_mid_frame(self, video_path: str, png_path: str) -> float:
        """Grab the frame halfway through *video_path*; return its offset in seconds."""
        mid_sec = self.probe_duration(video_path) / 2
        self.capture_frame(video_path, png_path, mid_sec)
        return mid_sec
