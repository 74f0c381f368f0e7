import io
import os

import pytest

import app as app_module
from conftest import parsed_analysis, transcript_record, upload_video
from models import Submission, db
from worker import process_pending_jobs


@pytest.fixture
def started(monkeypatch):
    """Record worker start requests instead of spawning the thread."""
    calls = []
    monkeypatch.setattr(app_module, "start_processing", calls.append)
    return calls


def load(app, submission_id):
    with app.app_context():
        return db.session.get(Submission, submission_id)


def add_legacy_clips(app):
    legacy = app.config["LEGACY_CLIPS_DIR"]
    os.makedirs(legacy, exist_ok=True)
    for name in ("v1.mp4", "v2.mp4"):
        with open(os.path.join(legacy, name), "wb") as f:
            f.write(b"legacy")


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True}


def test_cors_headers(client):
    resp = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
    assert resp.headers["Access-Control-Allow-Origin"] in ("*", "http://localhost:5173")


def test_upload_stores_file_and_record(app, client):
    data = b"\x00\x00\x00\x18ftypmp42" + b"0" * 1000
    resp = upload_video(client, data=data, filename="my lesson.mp4")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    submission = body["submission"]
    assert submission["prompt"] == "Learn how photosynthesis works"
    assert submission["file"]["originalName"] == "my lesson.mp4"
    assert submission["file"]["sizeBytes"] == len(data)
    assert submission["file"]["storedName"].endswith("_my_lesson.mp4")
    assert submission["transcript"] is None
    with open(submission["file"]["path"], "rb") as f:
        assert f.read() == data
    assert submission["createdAt"].endswith("Z")


def test_upload_requires_prompt(app, client):
    resp = upload_video(client, prompt="   ")
    assert resp.status_code == 400
    assert resp.get_json() == {"ok": False, "error": "Prompt is required."}
    assert os.listdir(app.config["UPLOAD_DIR"]) == []


def test_upload_requires_video(client):
    resp = upload_video(client, data=None)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Video file is required."


def test_upload_rejects_disallowed_type(app, client):
    resp = upload_video(client, filename="notes.txt", mimetype="text/plain")
    assert resp.status_code == 400
    assert "mp4, webm, or mov" in resp.get_json()["error"]
    assert os.listdir(app.config["UPLOAD_DIR"]) == []
    assert client.get("/api/submissions").get_json()["submissions"] == []


def test_upload_rejects_oversized_file(make_app):
    app = make_app(MAX_UPLOAD_BYTES=1024)
    client = app.test_client()

    resp = upload_video(client, data=b"0" * 2048)

    assert resp.status_code == 413
    assert resp.get_json()["ok"] is False
    assert "File must be under" in resp.get_json()["error"]
    assert os.listdir(app.config["UPLOAD_DIR"]) == []
    assert client.get("/api/submissions").get_json()["submissions"] == []


def test_request_over_content_length_is_json_413(make_app):
    app = make_app(MAX_CONTENT_LENGTH=512)
    resp = upload_video(app.test_client(), data=b"0" * 2048)
    assert resp.status_code == 413
    assert resp.get_json()["ok"] is False


def test_list_and_get_submissions(client):
    first = upload_video(client, prompt="first").get_json()["submission"]["id"]
    second = upload_video(client, prompt="second").get_json()["submission"]["id"]

    listed = client.get("/api/submissions").get_json()["submissions"]
    assert [s["id"] for s in listed] == [second, first]

    resp = client.get(f"/api/submissions/{first}")
    assert resp.get_json()["submission"]["prompt"] == "first"


def test_unknown_submission_is_404(client):
    for method, url in [
        ("get", "/api/submissions/nope"),
        ("post", "/api/transcribe/nope"),
        ("post", "/api/gemini/analyze/nope"),
        ("post", "/api/veo/generate/nope"),
        ("post", "/api/pipeline/nope"),
        ("get", "/api/echo/session/nope"),
        ("get", "/api/screenshot/nope"),
    ]:
        resp = getattr(client, method)(url)
        assert resp.status_code == 404, url
        assert resp.get_json() == {"ok": False, "error": "Submission not found."}


def test_unknown_job_is_404(client):
    resp = client.get("/api/jobs/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Job not found."


def test_transcribe_then_cached(app, client, make_submission, toolkit):
    submission_id = make_submission()

    first = client.post(f"/api/transcribe/{submission_id}").get_json()
    assert first["ok"] is True
    assert first["cached"] is False
    assert first["transcript"]["provider"] == "whisper.cpp"
    assert first["transcript"]["segments"][0] == {"startMs": 1000, "endMs": 3500, "text": "hello world"}
    runs = sum(1 for c in toolkit.calls if c[0] == "run_tool")

    second = client.post(f"/api/transcribe/{submission_id}").get_json()
    assert second["cached"] is True
    assert second["transcript"] == first["transcript"]
    assert sum(1 for c in toolkit.calls if c[0] == "run_tool") == runs
    assert load(app, submission_id).transcript == first["transcript"]


def test_transcribe_missing_file(app, client, make_submission):
    submission_id = make_submission()
    os.unlink(load(app, submission_id).file_path)

    resp = client.post(f"/api/transcribe/{submission_id}")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Video file missing on disk."


def test_download_transcript(client, make_submission):
    submission_id = make_submission(transcript=transcript_record())

    txt = client.get(f"/api/download/{submission_id}/txt")
    assert txt.status_code == 200
    assert txt.get_data(as_text=True) == "hello world"
    assert f"{submission_id}_transcript.txt" in txt.headers["Content-Disposition"]

    srt = client.get(f"/api/download/{submission_id}/srt")
    assert srt.get_data(as_text=True) == "1\n00:00:01,000 --> 00:00:03,500\nhello world\n"


def test_download_without_transcript(client, make_submission):
    submission_id = make_submission()
    assert client.get(f"/api/download/{submission_id}/srt").status_code == 404
    assert client.get(f"/api/download/{submission_id}/pdf").status_code == 404


def test_screenshot(app, client, make_submission):
    submission_id = make_submission()
    body = client.get(f"/api/screenshot/{submission_id}").get_json()

    assert body["midSec"] == 30.0
    assert body["screenshotUrl"] == f"/screenshots/{submission_id}_mid.png"
    resp = client.get(body["screenshotUrl"])
    assert resp.status_code == 200
    assert resp.data == b"\x89PNG"


def test_analyze_requires_transcript(app, client, make_submission, genai):
    submission_id = make_submission()

    resp = client.post(f"/api/gemini/analyze/{submission_id}")

    assert resp.status_code == 400
    assert "Run transcription first" in resp.get_json()["error"]
    assert genai.content_requests == []
    assert load(app, submission_id).gemini is None


def test_analyze_stores_parsed_result(app, client, make_submission):
    submission_id = make_submission(transcript=transcript_record())

    body = client.post(f"/api/gemini/analyze/{submission_id}").get_json()

    assert body["gemini"]["parsed"]["show"] == "Magic School Bus"
    assert body["gemini"]["parsed"]["longestBreak"]["breakStartMs"] == 3500
    assert load(app, submission_id).gemini == body["gemini"]


def test_analyze_without_api_key(app, client, make_submission):
    app.extensions["video_quiz"]["genai"] = None
    app.config["GEMINI_API_KEY"] = None
    submission_id = make_submission(transcript=transcript_record())

    resp = client.post(f"/api/gemini/analyze/{submission_id}")
    assert resp.status_code == 500
    assert "GEMINI_API_KEY" in resp.get_json()["error"]


def test_veo_requires_analysis(client, make_submission, genai):
    submission_id = make_submission(transcript=transcript_record())
    resp = client.post(f"/api/veo/generate/{submission_id}")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Missing clips. Run analysis first."
    assert genai.video_requests == []


def test_veo_generate(app, client, make_submission):
    submission_id = make_submission(gemini=parsed_analysis())

    veo = client.post(f"/api/veo/generate/{submission_id}").get_json()["veo"]

    assert veo["clip1Url"] == f"/veo/{submission_id}_clip1.mp4"
    assert veo["clip2Url"] == f"/veo/{submission_id}_clip2.mp4"
    assert set(veo["prompts"]) == {"prompt1", "prompt2"}
    assert client.get(veo["clip1Url"]).data == b"veo-clip"
    assert load(app, submission_id).veo == veo


def test_splice_with_submission(app, client, make_submission, toolkit):
    add_legacy_clips(app)
    submission_id = make_submission()

    resp = client.post("/api/splice", data={"submissionId": submission_id, "timestamp": "4200"})

    body = resp.get_json()
    assert resp.status_code == 200
    assert body["timestampMs"] == 4200
    assert body["outputUrl"] == "/eavs/" + body["outputFileName"]
    assert client.get(body["outputUrl"]).data == b"spliced"
    assert load(app, submission_id).eav["outputFileName"] == body["outputFileName"]


def test_splice_with_adhoc_upload_removes_it(app, client):
    add_legacy_clips(app)
    resp = client.post(
        "/api/splice",
        data={"timestamp": "1500", "video": (io.BytesIO(b"video"), "clip.mp4", "video/mp4")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    assert os.listdir(app.config["UPLOAD_DIR"]) == []


@pytest.mark.parametrize("form,error", [
    ({}, "timestamp is required."),
    ({"timestamp": "-5"}, "timestamp must be a non-negative integer (ms)."),
    ({"timestamp": "soon"}, "timestamp must be a non-negative integer (ms)."),
    ({"timestamp": "100"}, "Either upload a video or provide a submissionId."),
])
def test_splice_rejects_bad_input(client, form, error):
    resp = client.post("/api/splice", data=form)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == error


def test_splice_without_clips(client, make_submission):
    submission_id = make_submission()
    resp = client.post("/api/splice", data={"submissionId": submission_id, "timestamp": "100"})
    assert resp.status_code == 404
    assert "AI clips not found" in resp.get_json()["error"]


def test_pipeline_runs_every_stage(app, client, make_submission, started):
    submission_id = make_submission()

    resp = client.post(f"/api/pipeline/{submission_id}")
    assert resp.status_code == 202
    body = resp.get_json()
    assert body["job"]["status"] == "queued"
    assert len(started) == 1

    process_pending_jobs(app)

    job = client.get(f"/api/jobs/{body['jobId']}").get_json()["job"]
    assert job["status"] == "done"
    assert job["progress"] == 100
    assert job["error"] is None
    assert job["result"]["timestampMs"] == 3500

    submission = client.get(f"/api/submissions/{submission_id}").get_json()["submission"]
    assert submission["transcript"]["segments"]
    assert submission["gemini"]["parsed"]["clip2Answer"].startswith("Photosynthesis")
    assert submission["veo"]["clip1Url"].endswith("_clip1.mp4")
    assert submission["eav"] == job["result"]


def test_echo_session_and_verify(client, make_submission):
    submission_id = make_submission(gemini=parsed_analysis(), eav={"timestampMs": 20000})

    session = client.get(f"/api/echo/session/{submission_id}").get_json()
    assert session["ok"] is True
    assert session["question"] == "What do plants use to turn sunlight into food?"
    assert session["timeline"]["answerStartMs"] == 28000

    right = client.post("/api/echo/verify", json={"submissionId": submission_id, "userAnswer": "it is photosynthesis"})
    assert right.get_json() == {
        "ok": True, "correct": True, "message": "That's right!", "expectedAnswer": "photosynthesis",
    }

    wrong = client.post("/api/echo/verify", json={"submissionId": submission_id, "userAnswer": "mitochondria"})
    assert wrong.get_json()["correct"] is False
    assert wrong.get_json()["message"] == "Not quite. The answer was: photosynthesis"


def test_echo_verify_validation(client, make_submission):
    submission_id = make_submission()
    assert client.post("/api/echo/verify", json={"userAnswer": "x"}).status_code == 400
    assert client.post("/api/echo/verify", json={"submissionId": submission_id}).status_code == 400
    resp = client.post("/api/echo/verify", json={"submissionId": submission_id, "userAnswer": "x"})
    assert resp.status_code == 400
    assert "Run analysis first" in resp.get_json()["error"]


def test_echo_verify_accepts_expected_answer_override(client, make_submission):
    submission_id = make_submission()
    resp = client.post(
        "/api/echo/verify",
        data={"submissionId": submission_id, "userAnswer": "four", "expectedAnswer": "Four"},
    )
    assert resp.get_json()["correct"] is True


def test_serves_client(app, client):
    os.makedirs(app.config["CLIENT_DIR"])
    with open(os.path.join(app.config["CLIENT_DIR"], "index.html"), "w") as f:
        f.write("<h1>quiz</h1>")

    assert client.get("/").data == b"<h1>quiz</h1>"
    assert client.get("/index.html").status_code == 200
    missing = client.get("/app.js")
    assert missing.status_code == 404
    assert missing.get_json()["ok"] is False


def test_echo_verify_grades_against_generated_narration(client, make_submission):
    narration = "Photosynthesis! Leaves catch sunlight and make sugar for the plant."
    submission_id = make_submission(gemini=parsed_analysis(clip2Answer=narration), eav={"timestampMs": 3500})

    resp = client.post("/api/echo/verify", json={"submissionId": submission_id, "userAnswer": "photosynthesis"})

    assert resp.get_json()["correct"] is True
    assert resp.get_json()["expectedAnswer"] == narration
