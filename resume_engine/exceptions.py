"""Domain errors raised by services and translated to HTTP responses in the routes."""


class ResumeEngineError(Exception):
    """Base class for domain errors."""


class DocumentNotFoundError(ResumeEngineError):
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Resume {document_id} not found")


class OwnershipError(ResumeEngineError):
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Access denied to resume {document_id}")


class JobNotFoundError(ResumeEngineError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class UnsupportedFileTypeError(ResumeEngineError):
    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Unsupported file type: {filename}. Allowed: PDF, DOCX, DOC")


class InvalidTransitionError(ResumeEngineError):
    def __init__(self, document_id: str, from_state: str, to_state: str, reason: str = ""):
        self.document_id = document_id
        self.from_state = from_state
        self.to_state = to_state
        detail = f"Illegal transition {from_state} -> {to_state} for resume {document_id}"
        super().__init__(f"{detail}: {reason}" if reason else detail)


class PipelineBusyError(ResumeEngineError):
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Resume {document_id} is already being processed")


class StorageError(ResumeEngineError):
    """Blob store read or write failed."""


class JobSearchError(ResumeEngineError):
    """The external job search provider is unavailable or rejected the request."""
