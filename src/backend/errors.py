from typing import List, Optional


class PipelineError(Exception):
    """Base class for failures of the extended video pipeline."""


class ScriptGenerationFailure(PipelineError):
    """A script tier failed. Recovered inside ScriptComposer, never escapes it."""


class SafetyRejection(PipelineError):
    def __init__(self, reasons: Optional[List[str]] = None, message: Optional[str] = None):
        self.reasons = list(reasons or [])
        detail = "; ".join(self.reasons) if self.reasons else "no reason given"
        super().__init__(message or f"Video generation blocked by safety filters: {detail}")


class SegmentTimeout(PipelineError):
    pass


class SegmentGenerationError(PipelineError):
    pass


class FrameExtractionFailure(PipelineError):
    pass


class ConcatenationFailure(PipelineError):
    pass


class CleanupFailure(PipelineError):
    pass


class ContentNotFoundError(PipelineError):
    pass


class JobConflictError(Exception):
    def __init__(self, active_job_id: str):
        self.active_job_id = active_job_id
        super().__init__(
            f"Video generation is already in progress. Wait for job {active_job_id} "
            "to finish before starting a new one."
        )
