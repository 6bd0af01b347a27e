"""
Error taxonomy for the screening pipeline.

Stage-level errors (probe, persistence) propagate to the orchestrator,
which marks the job failed. Classification-stage errors are recovered
inside the analyzer by skipping frames or falling back to the mock
classifier.
"""


class ScreeningError(Exception):
    """Base class for all pipeline errors"""


class ProbeError(ScreeningError):
    """Media inspection failed. Fatal to the job."""


class ExtractionError(ScreeningError):
    """Frame sampling failed. Recovered by the mock fallback."""


class ClassificationError(ScreeningError):
    """A single classifier call failed. Recovered by skipping the frame."""


class AllClassificationsFailedError(ScreeningError):
    """No frame was classified successfully."""


class PersistenceError(ScreeningError):
    """Document store read or write failed."""


class JobNotFoundError(ScreeningError):
    """No job record exists for the given id."""


class InvalidTransitionError(ScreeningError):
    """A status change would move a job backwards or out of a terminal state."""


class JobAlreadyRunningError(ScreeningError):
    """The pipeline is already running for this job id."""
