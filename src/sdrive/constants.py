"""Project-wide named constants.

Constants defined here replace inline magic numbers across the codebase.
Each constant has its derivation documented in a comment.
"""

# Restoration refresh cadence of the listing view. Archive restores take
# hours, so one metadata request per restoring file per minute is plenty.
REFRESH_INTERVAL_SECONDS: float = 60.0

# Standard archive retrievals finish within 12h, bulk ones within 48h.
# A file still restoring after 48h is no longer polled automatically.
RESTORE_WATCH_TIMEOUT_SECONDS: float = 48 * 60 * 60

# Upper bound of the per-attempt delay when waiting on a single restore.
RESTORE_WAIT_MAX_DELAY_SECONDS: float = 30 * 60

# Large uploads go straight to the object store; two minutes covers a
# few hundred MB on a slow uplink.
OBJECT_STORE_TIMEOUT_SECONDS: float = 120.0

API_TIMEOUT_SECONDS: float = 30.0

# 64 KiB chunks keep progress granular without per-chunk overhead.
TRANSFER_CHUNK_SIZE: int = 64 * 1024

DEFAULT_PER_PAGE: int = 10
