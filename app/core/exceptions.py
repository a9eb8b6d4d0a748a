"""Error taxonomy shared by the queue runtime, workers and services."""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class InvalidJobPayload(PipelineError):
    """Malformed job payload or missing required ids. Never retried."""


class ProviderError(PipelineError):
    """Transient email/SMS provider or network failure. Retried with backoff."""


class PermanentDeliveryError(PipelineError):
    """Recipient can never be reached (invalid number or address). Never retried."""


class InvalidStatusTransition(PipelineError):
    """A status change not allowed by the entity's transition table."""

    def __init__(self, entity: str, current, target):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity}: cannot move from {current} to {target}")


# Job failures that must not be retried by the queue
NON_RETRYABLE_ERRORS = (InvalidJobPayload, PermanentDeliveryError, InvalidStatusTransition)


class JobStalled(PipelineError):
    """A job's worker disappeared mid-run and its attempt budget is spent."""
