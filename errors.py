"""Error taxonomy shared by the generation client and the pipeline."""

from __future__ import annotations


class ModelError(Exception):
    """A generation-model call failed."""

    retryable = False

    def __init__(self, message: str, model: str = "") -> None:
        super().__init__(message)
        self.model = model


class QuotaExceededError(ModelError):
    retryable = True


class TransportError(ModelError):
    retryable = True


class SafetyBlockedError(ModelError):
    """The provider refused the request or the output on safety grounds. Never retried."""


class MalformedOutputError(ModelError):
    """The model answered, but not in the shape we asked for."""


class StageOrderError(Exception):
    """A stage executor was called before the stage it depends on completed."""


class ProductNotFound(KeyError):
    pass


class RetryNotAllowed(Exception):
    pass
