"""Two-phase upload pipeline: presign, direct transfer, confirm.

Public API
----------
.. autoclass:: PresignClient
.. autoclass:: ObjectTransferExecutor
.. autoclass:: UploadOrchestrator
.. autoclass:: UploadProgressTracker
.. autoclass:: TransferError
"""

from sdrive.upload.exceptions import TransferError, TransferErrorKind
from sdrive.upload.orchestrator import UploadOrchestrator
from sdrive.upload.presign import PresignClient, TicketRequest
from sdrive.upload.progress import UploadProgressTracker, aggregate_progress
from sdrive.upload.transfer import ObjectTransferExecutor

__all__ = [
    "ObjectTransferExecutor",
    "PresignClient",
    "TicketRequest",
    "TransferError",
    "TransferErrorKind",
    "UploadOrchestrator",
    "UploadProgressTracker",
    "aggregate_progress",
]
