"""SDrive cloud storage client."""

__version__ = "0.1.0"

from sdrive.models import (
    BatchUploadResult,
    ClientConfig,
    FileRecord,
    PendingUpload,
    StorageTier,
    UploadOutcome,
    UploadTicket,
)

__all__ = [
    "BatchUploadResult",
    "ClientConfig",
    "FileRecord",
    "PendingUpload",
    "StorageTier",
    "UploadOutcome",
    "UploadTicket",
    "__version__",
]
