"""Storage-tier finite state machine.

Each tier change gets an ephemeral FSM instance initialized at the file's
current tier and is used to validate transition legality before the
listing cache is patched.  The FSM performs no I/O and has no callbacks;
the tier manager owns the backend calls and the cache writes.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from sdrive.models import StorageTier


class TierLifecycleSM(StateMachine):
    """Three-state lifecycle of a file's storage class.

    States:
        standard  -- Immediately accessible.
        archive   -- Cold storage; must be restored before download.
        restoring -- Restoration requested, not yet complete.

    ``restoring`` is entered only from ``archive`` and left only when a
    refresh reports the file restored (or the restore lapsed).
    """

    standard = State("standard", initial=True, value="standard")
    archive = State("archive", value="archive")
    restoring = State("restoring", value="restoring")

    archive_file = standard.to(archive)
    restore = archive.to(restoring)
    restore_immediate = archive.to(standard)
    restore_pending = restoring.to.itself()
    complete_restore = restoring.to(standard)
    restore_lapsed = restoring.to(archive)


def create_tier_fsm(current: StorageTier | str) -> TierLifecycleSM:
    """Create an FSM positioned at *current*.

    Args:
        current: A :class:`StorageTier` or its value.
    """
    value = current.value if isinstance(current, StorageTier) else current
    return TierLifecycleSM(start_value=value)


def next_tier(current: StorageTier, event: str) -> StorageTier:
    """Tier reached from *current* by firing *event*.

    Raises:
        TransitionNotAllowed: If *event* is illegal from *current*.
    """
    fsm = create_tier_fsm(current)
    fsm.send(event)
    return StorageTier(fsm.current_state.value)


def observed_transition(previous: StorageTier, observed: StorageTier) -> str | None:
    """Name the event that explains a tier change seen on refresh.

    Returns ``None`` when nothing changed or the change has no legal
    explanation (the backend is authoritative either way).
    """
    if previous is observed:
        return None
    for event in _EVENTS_BY_SOURCE.get(previous, ()):
        try:
            if next_tier(previous, event) is observed:
                return event
        except TransitionNotAllowed:
            continue
    return None


_EVENTS_BY_SOURCE: dict[StorageTier, tuple[str, ...]] = {
    StorageTier.STANDARD: ("archive_file",),
    StorageTier.ARCHIVE: ("restore", "restore_immediate"),
    StorageTier.RESTORING: ("complete_restore", "restore_lapsed"),
}

__all__ = [
    "TierLifecycleSM",
    "TransitionNotAllowed",
    "create_tier_fsm",
    "next_tier",
    "observed_transition",
]
