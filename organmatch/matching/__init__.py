"""Matching engine — compatibility, scoring, ranking and the matching pass."""

from organmatch.matching.compatibility import BLOOD_COMPATIBILITY, is_compatible
from organmatch.matching.engine import rank_candidates, rank_for_recipient
from organmatch.matching.scoring import ScoringError, score_pair
from organmatch.schemas.matching import (
    CandidateMatch,
    DonorSnapshot,
    MatchingPassResult,
    MatchScope,
    MatchScore,
    RankingResult,
    RecipientSnapshot,
    SkippedPair,
)

__all__ = [
    "BLOOD_COMPATIBILITY",
    "is_compatible",
    "score_pair",
    "ScoringError",
    "rank_candidates",
    "rank_for_recipient",
    "CandidateMatch",
    "DonorSnapshot",
    "RecipientSnapshot",
    "MatchScore",
    "MatchScope",
    "RankingResult",
    "SkippedPair",
    "MatchingPassResult",
]
