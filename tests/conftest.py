"""Pytest configuration and fixtures for the video quiz tests."""

import io
import os
from types import SimpleNamespace

import pytest

from app import create_app
from media import VideoProps
from models import Submission, db

SRT_OUTPUT = """1
00:00:01,000 --> 00:00:03,500
hello world

2
00:00:12,000 --> 00:00:15,250
plants turn sunlight
into food
"""

GEMINI_OUTPUT = """SHOW: Magic School Bus
LONGEST_BREAK_MS: 3500-12000 (8500)
CLIP_1_QUESTION: Hey explorers... what do plants use to turn sunlight into food?
CLIP_2_ANSWER: Photosynthesis! Leaves catch sunlight and make sugar for the plant.
"""


class FakeToolkit:
    """MediaToolkit stand-in that writes placeholder files instead of running ffmpeg."""

    def __init__(self, duration=60.0, props=None, audio=None):
        self.duration = duration
        self.props = props or VideoProps(640, 360, 30.0)
        self.audio = audio or {}
        self.calls = []
        self.srt = SRT_OUTPUT
        self.text = "hello world\nplants turn sunlight into food"

    def _touch(self, path, data=b"x"):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    def run_tool(self, cmd, args):
        self.calls.append(("run_tool", cmd, list(args)))
        prefix = args[args.index("-of") + 1]
        with open(f"{prefix}.txt", "w", encoding="utf-8") as f:
            f.write(self.text)
        with open(f"{prefix}.srt", "w", encoding="utf-8") as f:
            f.write(self.srt)
        return ""

    def ffmpeg(self, args):
        self.calls.append(("ffmpeg", list(args)))
        self._touch(args[-1], b"spliced")
        return ""

    def probe_duration(self, path):
        self.calls.append(("probe_duration", path))
        return self.duration

    def probe_video_props(self, path):
        self.calls.append(("probe_video_props", path))
        return self.props

    def has_audio_stream(self, path):
        return self.audio.get(os.path.basename(path), True)

    def extract_audio(self, video_path, wav_path):
        self.calls.append(("extract_audio", video_path, wav_path))
        self._touch(wav_path, b"RIFF")
        return wav_path

    def capture_frame(self, video_path, png_path, at_sec):
        self.calls.append(("capture_frame", video_path, png_path, at_sec))
        self._touch(png_path, b"\x89PNG")
        return png_path

    def capture_mid_frame(self, video_path, png_path):
        mid = self.probe_duration(video_path) / 2
        self.capture_frame(video_path, png_path, mid)
        return mid


class FakeVideo:
    def __init__(self, data=b"veo-clip"):
        self.data = data

    def save(self, path):
        with open(path, "wb") as f:
            f.write(self.data)


class FakeGenai:
    """Just enough of ``genai.Client`` for analysis and clip generation."""

    def __init__(self, text=GEMINI_OUTPUT, polls=1, video=True):
        self.text = text
        self.polls = polls
        self.video = video
        self.content_requests = []
        self.video_requests = []
        self.downloads = []
        self.models = SimpleNamespace(
            generate_content=self._generate_content,
            generate_videos=self._generate_videos,
        )
        self.operations = SimpleNamespace(get=self._get_operation)
        self.files = SimpleNamespace(download=self._download)

    def _generate_content(self, model, contents, config=None):
        self.content_requests.append({"model": model, "contents": contents, "config": config})
        return SimpleNamespace(text=self.text)

    def _operation(self, done):
        videos = [SimpleNamespace(video=FakeVideo())] if self.video else []
        return SimpleNamespace(
            done=done,
            error=None,
            remaining=0,
            response=SimpleNamespace(generated_videos=videos) if done else None,
        )

    def _generate_videos(self, model, prompt, config=None):
        self.video_requests.append({"model": model, "prompt": prompt, "config": config})
        op = self._operation(self.polls == 0)
        op.remaining = self.polls
        return op

    def _get_operation(self, operation):
        remaining = operation.remaining - 1
        op = self._operation(remaining <= 0)
        op.remaining = remaining
        return op

    def _download(self, file):
        self.downloads.append(file)


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def genai():
    return FakeGenai()


@pytest.fixture
def make_app(tmp_path, toolkit, genai):
    """Build an app on in-memory SQLite with every directory under *tmp_path*."""

    def factory(**overrides):
        model_path = tmp_path / "ggml-test.bin"
        model_path.write_bytes(b"model")
        config = {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "UPLOAD_DIR": str(tmp_path / "uploads"),
            "DATA_DIR": str(tmp_path / "data"),
            "TMP_DIR": str(tmp_path / "tmp"),
            "VEO_DIR": str(tmp_path / "veo_outputs"),
            "SCREENSHOTS_DIR": str(tmp_path / "screenshots"),
            "EAVS_DIR": str(tmp_path / "EAVs"),
            "LEGACY_CLIPS_DIR": str(tmp_path / "temp"),
            "CLIENT_DIR": str(tmp_path / "client"),
            "WHISPER_MODEL_PATH": str(model_path),
            "TRANSCRIBE_PROVIDER": "whisper.cpp",
            "VEO_POLL_SECONDS": 0,
        }
        config.update(overrides)
        return create_app(config, media=toolkit, genai_client=genai)

    return factory


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


def upload_video(client, data=b"fake-mp4-bytes", filename="lesson.mp4",
                 mimetype="video/mp4", prompt="Learn how photosynthesis works"):
    form = {"prompt": prompt}
    if data is not None:
        form["video"] = (io.BytesIO(data), filename, mimetype)
    return client.post("/api/upload", data=form, content_type="multipart/form-data")


@pytest.fixture
def make_submission(app, tmp_path):
    """Insert a submission whose video file exists on disk; returns its id."""

    def factory(**fields):
        video = tmp_path / "uploads" / f"video_{len(os.listdir(tmp_path / 'uploads'))}.mp4"
        video.write_bytes(b"original-video")
        with app.app_context():
            submission = Submission(
                prompt=fields.pop("prompt", "Learn how photosynthesis works"),
                original_name="lesson.mp4",
                stored_name=video.name,
                file_path=str(video),
                size_bytes=video.stat().st_size,
                mimetype="video/mp4",
                **fields,
            )
            db.session.add(submission)
            db.session.commit()
            return submission.id

    return factory


def parsed_analysis(**overrides):
    parsed = {
        "show": "Magic School Bus",
        "longestBreak": {"breakStartMs": 3500, "breakEndMs": 12000, "breakDurationMs": 8500},
        "clip1Question": "What do plants use to turn sunlight into food?",
        "clip2Answer": "photosynthesis",
        "missing": [],
    }
    parsed.update(overrides)
    return {"model": "gemini-test", "createdAt": "2026-01-01T00:00:00Z", "rawText": "", "parsed": parsed}


def transcript_record(text="hello world", segments=None):
    if segments is None:
        segments = [{"startMs": 1000, "endMs": 3500, "text": "hello world"}]
    return {"provider": "whisper.cpp", "text": text, "segments": segments, "createdAt": "2026-01-01T00:00:00Z"}
