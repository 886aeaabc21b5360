class DownloadJobsError(Exception):
    """Base error for the download job core."""


class InvalidInput(DownloadJobsError):
    pass


class NotFound(DownloadJobsError):
    pass


class Superseded(DownloadJobsError):
    """A worker wrote with an attempt token that is no longer current."""


class InvalidTransition(DownloadJobsError):
    pass


class ProcessingFailure(DownloadJobsError):
    """Raised by processing strategies to report a classified failure."""

    retryable = True


class TransientFailure(ProcessingFailure):
    retryable = True


class PermanentFailure(ProcessingFailure):
    retryable = False
