"""Repository layer over the Submission and Job tables.

Handlers and the worker only touch the database through these classes, so
every mutation is a single-row commit rather than a rewrite of all records.
"""

from errors import NotFoundError
from models import JOB_STATUSES, Job, Submission, db, utcnow


class SubmissionStore:

    def get(self, submission_id):
        if not submission_id:
            return None
        return db.session.get(Submission, submission_id)

    def get_or_404(self, submission_id):
        submission = self.get(submission_id)
        if submission is None:
            raise NotFoundError("Submission not found.")
        return submission

    def list(self):
        """All submissions, newest first."""
        return (
            Submission.query
            .order_by(Submission.created_at.desc(), Submission.id.desc())
            .all()
        )

    def create(self, prompt, original_name, stored_name, file_path, size_bytes, mimetype):
        submission = Submission(
            prompt=prompt,
            original_name=original_name,
            stored_name=stored_name,
            file_path=file_path,
            size_bytes=size_bytes,
            mimetype=mimetype,
        )
        return self.upsert(submission)

    def upsert(self, submission):
        db.session.add(submission)
        db.session.commit()
        return submission


class JobStore:

    def create(self, submission_id):
        job = Job(submission_id=submission_id, status="queued", progress=0, message="Queued")
        db.session.add(job)
        db.session.commit()
        return job

    def get(self, job_id):
        if not job_id:
            return None
        return db.session.get(Job, job_id)

    def get_or_404(self, job_id):
        job = self.get(job_id)
        if job is None:
            raise NotFoundError("Job not found.")
        return job

    def next_queued(self):
        return (
            Job.query
            .filter_by(status="queued")
            .order_by(Job.created_at.asc())
            .first()
        )

    def update(self, job, **fields):
        if "status" in fields and fields["status"] not in JOB_STATUSES:
            raise ValueError(f"Unknown job status: {fields['status']}")
        for name, value in fields.items():
            setattr(job, name, value)
        job.updated_at = utcnow()
        db.session.commit()
        return job
