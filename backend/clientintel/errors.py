from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error the pipeline surfaces to its callers."""

    status_code: int = 500
    title: str = "Internal Server Error"


class ValidationError(PipelineError):
    """A required input is missing or malformed. Raised before any external call."""

    status_code = 400
    title = "Bad Request"


class ReferenceNotFound(PipelineError):
    status_code = 404
    title = "Not Found"

    def __init__(self, entity: str, entity_id: str | None):
        self.entity = str(entity)
        self.entity_id = str(entity_id or "")
        super().__init__(f"{self.entity} not found: {self.entity_id}")


class ApprovalNotPermitted(PipelineError):
    status_code = 403
    title = "Forbidden"


class InvalidTransition(PipelineError):
    status_code = 409
    title = "Conflict"


class EnrichmentFailure(PipelineError):
    """The language model was unreachable, returned nothing, or returned unusable JSON."""

    status_code = 502
    title = "Enrichment Failed"


class PersistenceError(PipelineError):
    """Store failure (constraint violation, connectivity). Never retried by the pipeline."""

    status_code = 500
    title = "Storage Error"


class BatchWindowIncomplete(PersistenceError):
    """The index read for a closed batch kept missing items after bounded re-reads."""

    status_code = 503
    title = "Service Unavailable"

    def __init__(self, missing: list[int]):
        self.missing = list(missing)
        super().__init__(f"batch window incomplete, missing seq {self.missing}")
