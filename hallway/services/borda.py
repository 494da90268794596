from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import BallotsOutstanding, InvalidBallot
from .slate_assembler import SlateItem

SELECTED_TOPIC_COUNT = 2


def borda_points(slate_size: int, rank_position: int) -> int:
    """Points for an entry ranked at ``rank_position`` (0 = best)."""
    return slate_size - 1 - rank_position


def _listed(entry_ids: Iterable[str]) -> str:
    return ", ".join(entry_id or "(blank)" for entry_id in sorted(entry_ids))


def validate_ballot(
    ordered_entry_ids: Iterable[Any],
    slate_entry_ids: Sequence[str],
) -> List[str]:
    """
    Check that a ballot is a total order over exactly the slate.

    Returns the normalised entry id list; raises InvalidBallot naming every
    missing, duplicated and unknown entry otherwise.
    """
    normalized = [str(entry_id).strip() for entry_id in ordered_entry_ids]
    expected = set(slate_entry_ids)

    counts = Counter(normalized)
    duplicated = {entry_id for entry_id, count in counts.items() if count > 1}
    unknown = {entry_id for entry_id in counts if entry_id not in expected}
    missing = expected - set(counts)

    if not (duplicated or unknown or missing):
        return normalized

    problems = []
    if missing:
        problems.append("missing " + _listed(missing))
    if duplicated:
        problems.append("duplicated " + _listed(duplicated))
    if unknown:
        problems.append("not on this slate " + _listed(unknown))
    raise InvalidBallot(
        "Ballot must rank every slate entry exactly once: " + "; ".join(problems) + ".",
        missing=missing,
        duplicated=duplicated,
        unknown=unknown,
    )


@dataclass(frozen=True)
class ScoreRow:
    entry_id: str
    label: str
    contributor_id: str
    topic_id: Optional[int]
    is_placeholder: bool
    score: int
    mean_rank: float
    first_place_count: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "label": self.label,
            "contributor_id": self.contributor_id,
            "topic_id": self.topic_id,
            "is_placeholder": self.is_placeholder,
            "score": self.score,
            "mean_rank": self.mean_rank,
            "first_place_count": self.first_place_count,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ScoreRow":
        return cls(
            entry_id=str(payload["entry_id"]),
            label=str(payload.get("label") or ""),
            contributor_id=str(payload.get("contributor_id") or ""),
            topic_id=payload.get("topic_id"),
            is_placeholder=bool(payload.get("is_placeholder", False)),
            score=int(payload.get("score") or 0),
            mean_rank=float(payload.get("mean_rank") or 0.0),
            first_place_count=int(payload.get("first_place_count") or 0),
        )


@dataclass(frozen=True)
class RankingResult:
    cohort_id: str
    selected_entry_ids: Tuple[str, ...]
    # Ordered best first using the same tie-break as the selection.
    scores: Tuple[ScoreRow, ...]
    resolved_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    @property
    def selected(self) -> Tuple[ScoreRow, ...]:
        by_id = {row.entry_id: row for row in self.scores}
        return tuple(by_id[entry_id] for entry_id in self.selected_entry_ids)

    @property
    def total_points(self) -> int:
        return sum(row.score for row in self.scores)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "cohort_id": self.cohort_id,
            "selected_entry_ids": list(self.selected_entry_ids),
            "selected": [row.to_payload() for row in self.selected],
            "scores": [row.to_payload() for row in self.scores],
            "resolved_at": self.resolved_at.isoformat(),
        }


def _tie_break_key(row: ScoreRow) -> Tuple[int, float, str]:
    # Higher score first; then lowest topic id; placeholders after real topics.
    if row.is_placeholder or row.topic_id is None:
        topic_key = float("inf")
    else:
        topic_key = float(row.topic_id)
    return (-row.score, topic_key, row.entry_id)


class BordaResolver:
    """Turn a cohort's complete ballots into a RankingResult."""

    def __init__(self, selected_count: int = SELECTED_TOPIC_COUNT) -> None:
        self.selected_count = selected_count

    def score(
        self,
        slate: Sequence[SlateItem],
        ballots: Mapping[str, Sequence[str]],
    ) -> Tuple[ScoreRow, ...]:
        slate_ids = [entry.entry_id for entry in slate]
        slate_size = len(slate_ids)
        totals: Dict[str, int] = {entry_id: 0 for entry_id in slate_ids}
        rank_sums: Dict[str, int] = {entry_id: 0 for entry_id in slate_ids}
        firsts: Dict[str, int] = {entry_id: 0 for entry_id in slate_ids}

        for voter_id in sorted(ballots):
            ordered = validate_ballot(ballots[voter_id], slate_ids)
            for rank_position, entry_id in enumerate(ordered):
                totals[entry_id] += borda_points(slate_size, rank_position)
                rank_sums[entry_id] += rank_position
                if rank_position == 0:
                    firsts[entry_id] += 1

        voter_count = len(ballots)
        rows = [
            ScoreRow(
                entry_id=entry.entry_id,
                label=entry.label,
                contributor_id=entry.contributor_id,
                topic_id=entry.topic_id,
                is_placeholder=entry.is_placeholder,
                score=totals[entry.entry_id],
                mean_rank=(rank_sums[entry.entry_id] / voter_count) if voter_count else 0.0,
                first_place_count=firsts[entry.entry_id],
            )
            for entry in slate
        ]
        return tuple(sorted(rows, key=_tie_break_key))

    def resolve(
        self,
        cohort_id: str,
        slate: Sequence[SlateItem],
        ballots: Mapping[str, Sequence[str]],
        voters: Iterable[str],
    ) -> RankingResult:
        pending = set(voters) - set(ballots)
        if pending:
            raise BallotsOutstanding(cohort_id, pending)

        rows = self.score(slate, ballots)
        selected = tuple(
            row.entry_id for row in rows if not row.is_placeholder
        )[: self.selected_count]
        return RankingResult(
            cohort_id=cohort_id,
            selected_entry_ids=selected,
            scores=rows,
        )
