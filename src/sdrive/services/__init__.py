"""Services facade for the SDrive client.

Public API boundary for the CLI and other front-ends.
"""

from sdrive.services.drive import Drive, pending_from_path
from sdrive.services.files import DownloadResult, FileService

__all__ = ["DownloadResult", "Drive", "FileService", "pending_from_path"]
