from typing import List, Optional


class PipelineError(Exception):
    """Base class for errors raised by a pipeline stage.

    ``errors`` carries the individual problems; they end up in the job's
    ``errors`` list when the orchestrator fails the job.
    """

    kind = "pipeline"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors) if errors else [message]


class ManifestValidationError(PipelineError):
    kind = "validation"


class TransformationError(PipelineError):
    kind = "transformation"


class PackagingError(PipelineError):
    kind = "packaging"


class DeploymentError(PipelineError):
    kind = "deployment"


class NotificationError(PipelineError):
    """Webhook delivery failed. Logged only, never changes a job."""

    kind = "notification"


class JobTimeoutError(PipelineError):
    kind = "timeout"


class QueueFullError(Exception):
    """Raised by submit() when the job queue has no free slot."""


class InvalidTransitionError(Exception):
    """A job status change that would move backwards or out of a terminal state."""
