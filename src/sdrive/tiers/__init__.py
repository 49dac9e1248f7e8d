"""Storage-tier state machine, tier changes and restoration polling."""

from sdrive.tiers.fsm import TierLifecycleSM, create_tier_fsm, next_tier
from sdrive.tiers.manager import (
    DownloadKind,
    DownloadLink,
    RestoreTimeoutError,
    TierChangeKind,
    TierChangeResult,
    TierManager,
)
from sdrive.tiers.refresher import RestorationRefresher

__all__ = [
    "DownloadKind",
    "DownloadLink",
    "RestorationRefresher",
    "RestoreTimeoutError",
    "TierChangeKind",
    "TierChangeResult",
    "TierLifecycleSM",
    "TierManager",
    "create_tier_fsm",
    "next_tier",
]
