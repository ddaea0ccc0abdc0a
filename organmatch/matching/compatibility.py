"""Donor → recipient compatibility predicate.

Pure Python, deterministic, never raises. A pair is viable only when blood
group, organ type and age group all agree. Unknown values fail closed.
"""

from __future__ import annotations

from typing import Any

# Donor blood group → recipient groups it may donate to (direction matters)
BLOOD_COMPATIBILITY: dict[str, frozenset[str]] = {
    "A+": frozenset({"A+", "AB+"}),
    "A-": frozenset({"A+", "A-", "AB+", "AB-"}),
    "B+": frozenset({"B+", "AB+"}),
    "B-": frozenset({"B+", "B-", "AB+", "AB-"}),
    "AB+": frozenset({"AB+"}),
    "AB-": frozenset({"AB+", "AB-"}),
    "O+": frozenset({"A+", "B+", "AB+", "O+"}),
    "O-": frozenset({"A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"}),
}

BLOOD_GROUPS: tuple[str, ...] = tuple(BLOOD_COMPATIBILITY)


def _present(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_blood_compatible(donor_group: Any, recipient_group: Any) -> bool:
    """True if a donor of `donor_group` may give to a recipient of `recipient_group`."""
    if not isinstance(donor_group, str) or not isinstance(recipient_group, str):
        return False
    eligible = BLOOD_COMPATIBILITY.get(donor_group)
    return eligible is not None and recipient_group in eligible


def is_compatible(donor: Any, recipient: Any) -> bool:
    """Return True if the donor/recipient pair may be considered for matching.

    Reads only `blood_group`, `organ_type` and `age_group`. Accepts snapshots,
    ORM rows or any object exposing those attributes.
    """
    d_blood = getattr(donor, "blood_group", None)
    r_blood = getattr(recipient, "blood_group", None)
    if not is_blood_compatible(d_blood, r_blood):
        return False

    d_organ = getattr(donor, "organ_type", None)
    r_organ = getattr(recipient, "organ_type", None)
    if not (_present(d_organ) and d_organ == r_organ):
        return False

    d_age_group = getattr(donor, "age_group", None)
    r_age_group = getattr(recipient, "age_group", None)
    return _present(d_age_group) and d_age_group == r_age_group


def compatible_recipient_groups(donor_group: str) -> list[str]:
    """Recipient blood groups a donor group can serve, in table order."""
    eligible = BLOOD_COMPATIBILITY.get(donor_group, frozenset())
    return [g for g in BLOOD_GROUPS if g in eligible]


def compatible_donor_groups(recipient_group: str) -> list[str]:
    """Donor blood groups a recipient group can receive from, in table order."""
    return [g for g in BLOOD_GROUPS if recipient_group in BLOOD_COMPATIBILITY[g]]
