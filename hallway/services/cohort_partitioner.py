from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .errors import InsufficientParticipants

COHORT_SIZE = 3


@dataclass(frozen=True)
class Partition:
    cohorts: Tuple[Tuple[str, ...], ...]
    # Left over when the roster is not a multiple of the cohort size;
    # carried into the next round.
    deferred: Tuple[str, ...] = ()

    @property
    def assigned(self) -> Tuple[str, ...]:
        return tuple(pid for cohort in self.cohorts for pid in cohort)


class CohortPartitioner:
    """Split a checked-in roster into disjoint cohorts of three."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def partition(self, participant_ids: Iterable[str]) -> Partition:
        # Sorting first makes a seeded rng reproduce the same grouping
        # regardless of the order the roster was read in.
        roster: List[str] = sorted({str(pid) for pid in participant_ids})
        if len(roster) < COHORT_SIZE:
            raise InsufficientParticipants(len(roster), COHORT_SIZE)

        self.rng.shuffle(roster)
        usable = len(roster) - (len(roster) % COHORT_SIZE)
        cohorts = tuple(
            tuple(roster[start : start + COHORT_SIZE])
            for start in range(0, usable, COHORT_SIZE)
        )
        return Partition(cohorts=cohorts, deferred=tuple(roster[usable:]))
