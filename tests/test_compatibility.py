"""Tests for the donor → recipient compatibility predicate."""

from __future__ import annotations

import pytest

from matching_factories import make_donor, make_recipient
from organmatch.matching.compatibility import (
    BLOOD_COMPATIBILITY,
    BLOOD_GROUPS,
    compatible_donor_groups,
    compatible_recipient_groups,
    is_blood_compatible,
    is_compatible,
)


class TestBloodTable:
    """The fixed 8x8 directional ABO/Rh table."""

    def test_eight_groups(self):
        assert len(BLOOD_COMPATIBILITY) == 8
        assert set(BLOOD_GROUPS) == {"A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"}

    def test_o_negative_universal_donor(self):
        for recipient_group in BLOOD_GROUPS:
            assert is_blood_compatible("O-", recipient_group)

    def test_ab_positive_universal_recipient(self):
        for donor_group in BLOOD_GROUPS:
            assert is_blood_compatible(donor_group, "AB+")

    def test_ab_positive_donor_only_to_ab_positive(self):
        assert compatible_recipient_groups("AB+") == ["AB+"]

    def test_o_negative_receives_only_o_negative(self):
        assert compatible_donor_groups("O-") == ["O-"]

    def test_directional(self):
        assert is_blood_compatible("A-", "A+")
        assert not is_blood_compatible("A+", "A-")
        assert is_blood_compatible("O+", "B+")
        assert not is_blood_compatible("B+", "O+")

    @pytest.mark.parametrize(
        ("donor_group", "recipient_group"),
        [("A+", "B+"), ("B-", "A-"), ("AB-", "O-"), ("O+", "O-"), ("A+", "O+")],
    )
    def test_incompatible_pairs(self, donor_group, recipient_group):
        assert not is_blood_compatible(donor_group, recipient_group)

    @pytest.mark.parametrize("bad", [None, "", "  ", "Z+", "o-", "AB", 7])
    def test_unknown_groups_fail_closed(self, bad):
        assert not is_blood_compatible(bad, "AB+")
        assert not is_blood_compatible("O-", bad)


class TestIsCompatible:
    """Blood, organ and age group must all agree."""

    def test_reference_pair(self):
        donor = make_donor(blood_group="O-", organ_type="kidney", age_group="adult")
        recipient = make_recipient(blood_group="B+", organ_type="kidney", age_group="adult")
        assert is_compatible(donor, recipient) is True

    def test_organ_mismatch(self):
        donor = make_donor(organ_type="liver")
        recipient = make_recipient(organ_type="kidney")
        assert is_compatible(donor, recipient) is False

    def test_organ_match_is_exact(self):
        donor = make_donor(organ_type="Kidney")
        recipient = make_recipient(organ_type="kidney")
        assert is_compatible(donor, recipient) is False

    def test_pediatric_organ_not_for_adult(self):
        donor = make_donor(age_group="pediatric", age=9)
        recipient = make_recipient(age_group="adult")
        assert is_compatible(donor, recipient) is False

    def test_adult_organ_not_for_pediatric(self):
        donor = make_donor(age_group="adult")
        recipient = make_recipient(age_group="pediatric", age=8)
        assert is_compatible(donor, recipient) is False

    def test_pediatric_pair(self):
        donor = make_donor(age_group="pediatric", age=10)
        recipient = make_recipient(age_group="pediatric", age=7)
        assert is_compatible(donor, recipient) is True

    def test_blood_blocks_even_with_same_organ(self):
        donor = make_donor(blood_group="AB+")
        recipient = make_recipient(blood_group="B+")
        assert is_compatible(donor, recipient) is False

    def test_not_symmetric(self):
        assert is_compatible(make_donor(blood_group="O-"), make_recipient(blood_group="AB+")) is True
        assert is_compatible(make_donor(blood_group="AB+"), make_recipient(blood_group="O-")) is False

    @pytest.mark.parametrize("field", ["organ_type", "age_group", "blood_group"])
    def test_blank_fields_fail_closed(self, field):
        donor = make_donor(**{field: ""})
        recipient = make_recipient(**{field: ""})
        assert is_compatible(donor, recipient) is False

    @pytest.mark.parametrize("field", ["organ_type", "age_group", "blood_group"])
    def test_missing_fields_fail_closed(self, field):
        donor = make_donor(**{field: None})
        recipient = make_recipient(**{field: None})
        assert is_compatible(donor, recipient) is False

    def test_objects_without_attributes(self):
        assert is_compatible(object(), object()) is False

    def test_ignores_location_age_and_timestamps(self):
        recipient = make_recipient()
        near = make_donor(city="Pune", age=36)
        far = make_donor(city="Chennai", state="Tamil Nadu", age=80, created_at=None)
        assert is_compatible(near, recipient) is True
        assert is_compatible(far, recipient) is True

    def test_deterministic(self):
        donor = make_donor()
        recipient = make_recipient()
        assert {is_compatible(donor, recipient) for _ in range(5)} == {True}
