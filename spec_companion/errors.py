"""Error types raised by spec companion services.

Each error carries the HTTP status code and ``error_type`` string used by the
exception handlers in ``spec_companion.app``.
"""


class SpecCompanionError(Exception):
    """Base class for application errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(SpecCompanionError):
    """Bad input rejected before any state change."""

    status_code = 400
    error_type = "validation_error"


class NotFoundError(SpecCompanionError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ProviderError(SpecCompanionError):
    """Generation provider failure for a single requirement."""

    status_code = 502
    error_type = "provider_error"

    def __init__(self, detail: str, transient: bool = False):
        super().__init__(detail)
        self.transient = transient


class ExecutionFault(SpecCompanionError):
    """A single test could not be launched.

    Recorded on the test result as status ``error``; never aborts a batch.
    """

    error_type = "execution_fault"


class OrchestrationError(SpecCompanionError):
    """The execution batch itself failed; partial results are discarded."""

    error_type = "orchestration_error"
