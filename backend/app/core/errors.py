"""
Error taxonomy for site generation jobs.

Only ``InvalidInput`` and ``EngineUnavailable`` ever reach an HTTP caller;
every other ``GenerationError`` is raised inside the pipeline and converted
into a terminal ``failed`` job carrying ``str(error)`` as its message.
"""
from __future__ import annotations

from typing import Sequence


class GenerationError(Exception):
    """Base class for all job-level failures."""

    code: str = "generation_error"


class InvalidInput(GenerationError):
    code = "invalid_input"


class EngineUnavailable(GenerationError):
    code = "engine_unavailable"


class BackendTimeout(GenerationError):
    code = "backend_timeout"


class BackendError(GenerationError):
    code = "backend_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(GenerationError):
    code = "malformed_response"


class SchemaValidationFailed(GenerationError):
    code = "schema_validation_failed"

    def __init__(self, sub_schemas: Sequence[str], details: str = "") -> None:
        self.sub_schemas = list(sub_schemas)
        message = "Generated content failed validation: " + ", ".join(self.sub_schemas)
        if details:
            message = f"{message} ({details})"
        super().__init__(message)


class PersistenceFailed(GenerationError):
    code = "persistence_failed"


class JobNotFound(LookupError):
    def __init__(self, job_id) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id
