"""Error kinds surfaced by the analysis pipeline.

Each error carries a stable ``kind`` string and the HTTP status the API
answers with. None of them are retried inside the pipeline.
"""


class PipelineError(Exception):
    kind = "PipelineError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidInput(PipelineError):
    """Bad URL, unsupported protocol, unknown tier."""
    kind = "InvalidInput"
    status_code = 400


class UnprocessableContent(PipelineError):
    """Page needs script execution to render, or is not HTML."""
    kind = "UnprocessableContent"
    status_code = 422


class PayloadTooLarge(PipelineError):
    """Raw HTML or the reduced payload is over its ceiling."""
    kind = "PayloadTooLarge"
    status_code = 413


class UpstreamTimeout(PipelineError):
    kind = "UpstreamTimeout"
    status_code = 504


class UpstreamFailure(PipelineError):
    """Non-2xx response, redirect loop, protected page, or LLM provider error."""
    kind = "UpstreamFailure"
    status_code = 502
