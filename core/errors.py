class WatermarkJobError(RuntimeError):
    """Base class for failures of a watermark job."""


class JobValidationError(WatermarkJobError):
    """Request is missing images, watermark or settings."""


class PerImageError(WatermarkJobError):
    """One image could not be processed; the rest of the batch continues."""

    def __init__(self, filename: str, reason: str):
        super().__init__(f"{filename}: {reason}")
        self.filename = filename
        self.reason = reason


class BatchExhaustionError(WatermarkJobError):
    pass


class ArchiveError(WatermarkJobError):
    pass
