"""SQLAlchemy Submission/Job models and database instance."""

import secrets
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

JOB_STATUSES = (
    "queued",
    "transcribing",
    "analyzing",
    "capturing",
    "generating",
    "splicing",
    "done",
    "failed",
)


def new_id(length: int = 12) -> str:
    """Random URL-safe identifier of *length* characters."""
    return secrets.token_urlsafe(length)[:length]


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


class Submission(db.Model):
    __tablename__ = "submission"

    id = db.Column(db.String(16), primary_key=True, default=new_id)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    prompt = db.Column(db.Text, nullable=False)
    original_name = db.Column(db.Text, nullable=False)
    stored_name = db.Column(db.Text, nullable=False)
    file_path = db.Column(db.Text, nullable=False)
    size_bytes = db.Column(db.Integer, nullable=False)
    mimetype = db.Column(db.Text, nullable=False)
    # Stage outputs, each replaced wholesale when its stage reruns.
    transcript = db.Column(db.JSON, nullable=True)
    gemini = db.Column(db.JSON, nullable=True)
    veo = db.Column(db.JSON, nullable=True)
    eav = db.Column(db.JSON, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "createdAt": isoformat(self.created_at),
            "prompt": self.prompt,
            "file": {
                "originalName": self.original_name,
                "storedName": self.stored_name,
                "path": self.file_path,
                "sizeBytes": self.size_bytes,
                "mimetype": self.mimetype,
            },
            "transcript": self.transcript,
            "gemini": self.gemini,
            "veo": self.veo,
            "eav": self.eav,
        }


class Job(db.Model):
    __tablename__ = "job"

    id = db.Column(db.String(16), primary_key=True, default=new_id)
    submission_id = db.Column(db.String(16), db.ForeignKey("submission.id"), nullable=False)
    status = db.Column(db.Text, nullable=False, default="queued")
    progress = db.Column(db.Integer, nullable=False, default=0)
    message = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)
    result = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "submissionId": self.submission_id,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "error": self.error,
            "result": self.result,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
