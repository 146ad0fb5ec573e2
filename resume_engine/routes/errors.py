"""Translate domain and upstream errors raised by services into HTTP responses."""
import asyncio
from contextlib import contextmanager

import anthropic
import httpx
import openai
from fastapi import HTTPException, status

from resume_engine.exceptions import (
    DocumentNotFoundError,
    InvalidTransitionError,
    JobNotFoundError,
    JobSearchError,
    OwnershipError,
    PipelineBusyError,
    ResumeEngineError,
    StorageError,
    UnsupportedFileTypeError,
)
from resume_engine.services.gateway import CircuitOpenError
from resume_engine.utils.logger import logger

STATUS_CODES = {
    DocumentNotFoundError: status.HTTP_404_NOT_FOUND,
    JobNotFoundError: status.HTTP_404_NOT_FOUND,
    OwnershipError: status.HTTP_403_FORBIDDEN,
    UnsupportedFileTypeError: status.HTTP_400_BAD_REQUEST,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    PipelineBusyError: status.HTTP_409_CONFLICT,
    StorageError: status.HTTP_502_BAD_GATEWAY,
    JobSearchError: status.HTTP_502_BAD_GATEWAY,
}

UPSTREAM_ERRORS = (httpx.HTTPError, openai.OpenAIError, anthropic.AnthropicError, asyncio.TimeoutError)


def to_http(exc: ResumeEngineError) -> HTTPException:
    code = STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=code, detail=str(exc))


@contextmanager
def http_errors():
    """Re-raise errors from the enclosed block as HTTPException."""
    try:
        yield
    except ResumeEngineError as exc:
        raise to_http(exc) from exc
    except CircuitOpenError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except UPSTREAM_ERRORS as exc:
        logger.error("upstream.failed", extra={"error": str(exc)[:500], "error_type": type(exc).__name__})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream service failed") from exc
