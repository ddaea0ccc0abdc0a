"""Profile lifecycle transition map.

incomplete → pending → verified → matched, pending → rejected,
rejected → pending on resubmission. Entering VERIFIED is the only
transition that schedules a matching pass.
"""

from __future__ import annotations

from organmatch.models.enums import ProfileStatus

# Transition map: {current_status: {trigger_name: next_status}}
PROFILE_TRANSITIONS: dict[ProfileStatus, dict[str, ProfileStatus]] = {
    ProfileStatus.INCOMPLETE: {
        "submit": ProfileStatus.PENDING,
    },
    ProfileStatus.PENDING: {
        "verify": ProfileStatus.VERIFIED,
        "reject": ProfileStatus.REJECTED,
    },
    ProfileStatus.VERIFIED: {
        "match": ProfileStatus.MATCHED,
    },
    ProfileStatus.REJECTED: {
        "resubmit": ProfileStatus.PENDING,
    },
    ProfileStatus.MATCHED: {},
}


def next_status(current: ProfileStatus | str, trigger: str) -> ProfileStatus:
    """Resolve the status reached by `trigger` from `current`.

    Raises:
        ValueError: If the trigger is not valid from the current status.
    """
    current = ProfileStatus(current)
    transitions = PROFILE_TRANSITIONS.get(current, {})
    if trigger not in transitions:
        msg = (
            f"Invalid transition: {current.value} --{trigger}--> ??? "
            f"(valid: {list(transitions.keys())})"
        )
        raise ValueError(msg)
    return transitions[trigger]
