"""Error types raised by the pipeline stages and mapped to HTTP statuses."""


class PipelineError(Exception):
    """Base error; ``status_code`` is the HTTP status the API responds with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    status_code = 400


class NotFoundError(PipelineError):
    status_code = 404


class PayloadTooLarge(PipelineError):
    status_code = 413


class UpstreamError(PipelineError):
    """An external binary or service failed or answered with garbage."""


class CommandError(UpstreamError):
    """A subprocess exited non-zero (or could not be started)."""

    def __init__(self, cmd: str, returncode, stderr: str):
        super().__init__(f"{cmd} exited {returncode}\n{stderr}")
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
