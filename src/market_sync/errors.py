from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for failures raised by the sync engine."""


class ConnectivityError(SyncError):
    """Raised when the remote command gateway cannot be reached."""


class RemoteRejection(SyncError):
    """Raised when the gateway answers with success=false or a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DataShapeError(SyncError):
    """Raised when a gateway response or a row does not have the expected shape."""


class SourceReadError(SyncError):
    """Raised when reading the change log or a snapshot from the source fails."""


class BatchAbortedError(SyncError):
    """Raised by strict entities when a chunk fails; remaining chunks are skipped."""

    def __init__(self, message: str, *, result: object) -> None:
        super().__init__(message)
        self.result = result
