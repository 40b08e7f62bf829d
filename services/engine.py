"""Seeded, rank-greedy assignment engine for the job shadow lottery.

The engine is a pure function of its snapshot, policy and seed. It never
touches the database: the job manager hands it an immutable snapshot and
persists whatever outcome comes back.

One run goes through four strictly ordered passes, all drawing from a single
``random.Random`` instance:

1. manual pins, in input order, each consuming one slot if any is left;
2. prefill quotas, sampling from the students who put the position among
   their top choices;
3. priority ordering of everyone left (full shuffle, or grade groups
   shuffled one by one);
4. the rank-greedy draw, giving each student the best-ranked position that
   still has room.
"""

from __future__ import annotations

import json
import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from core.constants import GradeOrder, LotteryDefaults, PinSkipReason, ResultOrigin
from core.exceptions import SnapshotError
from core.logger import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True, slots=True)
class PreferenceEntry:
    position_id: int
    rank: int


@dataclass(frozen=True, slots=True)
class StudentEntry:
    student_id: int
    grade: Optional[int]
    preferences: Tuple[PreferenceEntry, ...] = ()

    def ranked_preferences(self) -> Tuple[PreferenceEntry, ...]:
        """Preferences by ascending rank; equal ranks keep stored order."""
        return tuple(sorted(self.preferences, key=lambda pref: pref.rank))


@dataclass(frozen=True, slots=True)
class PositionEntry:
    position_id: int
    slots: int
    company_id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ManualPin:
    student_id: int
    position_id: int


@dataclass(frozen=True, slots=True)
class PrefillQuota:
    position_id: int
    percentage: int


@dataclass(frozen=True)
class LotterySnapshot:
    """Everything one lottery run is allowed to see."""

    event_id: int
    students: Tuple[StudentEntry, ...]
    positions: Tuple[PositionEntry, ...]
    pins: Tuple[ManualPin, ...] = ()
    quotas: Tuple[PrefillQuota, ...] = ()


@dataclass(frozen=True, slots=True)
class Assignment:
    student_id: int
    position_id: int
    origin: ResultOrigin
    choice_rank: Optional[int]


@dataclass(frozen=True, slots=True)
class SkippedPin:
    student_id: int
    position_id: int
    reason: str


@dataclass(frozen=True)
class AssignmentOutcome:
    """Result of one engine run, in deterministic order."""

    seed: int
    assignments: Tuple[Assignment, ...]
    skipped_pins: Tuple[SkippedPin, ...]
    not_placed: Tuple[int, ...]
    no_choices: Tuple[int, ...]
    draw_order: Tuple[int, ...]
    cost: int = 0
    attempts: int = 1

    @property
    def total_eligible(self) -> int:
        return len(self.assignments) + len(self.not_placed) + len(self.no_choices)

    @property
    def placed_count(self) -> int:
        return len(self.assignments)

    def origin_counts(self) -> Dict[str, int]:
        counts = Counter(assignment.origin.value for assignment in self.assignments)
        return {origin.value: counts.get(origin.value, 0) for origin in ResultOrigin}

    def to_dict(self) -> dict:
        return {
            "seed": self.seed,
            "assignments": [
                [a.student_id, a.position_id, a.origin.value, a.choice_rank]
                for a in self.assignments
            ],
            "skipped_pins": [
                [s.student_id, s.position_id, s.reason] for s in self.skipped_pins
            ],
            "not_placed": list(self.not_placed),
            "no_choices": list(self.no_choices),
            "draw_order": list(self.draw_order),
        }

    def to_json(self) -> str:
        """Canonical serialization; equal outcomes give equal bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def validate_snapshot(snapshot: LotterySnapshot) -> List[str]:
    """Collect every structural problem in the snapshot."""
    problems: List[str] = []

    position_ids: Set[int] = set()
    for position in snapshot.positions:
        if position.position_id in position_ids:
            problems.append(f"duplicate position {position.position_id}")
        position_ids.add(position.position_id)
        if position.slots < 0:
            problems.append(f"position {position.position_id} has negative capacity {position.slots}")

    student_ids: Set[int] = set()
    for student in snapshot.students:
        if student.student_id in student_ids:
            problems.append(f"duplicate student {student.student_id}")
        student_ids.add(student.student_id)

        seen: Set[int] = set()
        for pref in student.preferences:
            if pref.position_id not in position_ids:
                problems.append(
                    f"student {student.student_id} prefers unknown position {pref.position_id}"
                )
            if pref.position_id in seen:
                problems.append(
                    f"student {student.student_id} ranks position {pref.position_id} twice"
                )
            seen.add(pref.position_id)
            if pref.rank < 1:
                problems.append(
                    f"student {student.student_id} has non-positive rank {pref.rank}"
                )

    for pin in snapshot.pins:
        if pin.student_id not in student_ids:
            problems.append(f"pin references unknown student {pin.student_id}")
        if pin.position_id not in position_ids:
            problems.append(f"pin references unknown position {pin.position_id}")

    for quota in snapshot.quotas:
        if quota.position_id not in position_ids:
            problems.append(f"prefill quota references unknown position {quota.position_id}")
        if not 0 <= quota.percentage <= 100:
            problems.append(
                f"prefill percentage {quota.percentage} for position {quota.position_id} is outside 0-100"
            )

    return problems


class _ProgressTracker:
    """Throttle progress callbacks to one per batch of students."""

    def __init__(self, callback: Optional[ProgressCallback], total: int, batch: int) -> None:
        self.callback = callback
        self.total = total
        self.batch = max(1, batch)
        self.processed = 0
        self._last_reported = 0

    def advance(self, count: int = 1) -> None:
        self.processed += count
        if self.callback and self.processed - self._last_reported >= self.batch:
            self._report()

    def finish(self) -> None:
        if self.callback and self._last_reported != self.processed:
            self._report()

    def _report(self) -> None:
        self._last_reported = self.processed
        self.callback(self.processed, self.total)


class AssignmentEngine:
    """Deterministic lottery assignment over an immutable snapshot."""

    def __init__(
        self,
        grade_order: GradeOrder = GradeOrder.NONE,
        attempts: int = LotteryDefaults.ATTEMPTS,
        progress_batch: int = LotteryDefaults.PROGRESS_BATCH,
        top_choices: int = LotteryDefaults.PREFILL_TOP_CHOICES,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.grade_order = GradeOrder(grade_order)
        self.attempts = attempts
        self.progress_batch = progress_batch
        self.top_choices = top_choices

    def run(
        self,
        snapshot: LotterySnapshot,
        seed: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AssignmentOutcome:
        """Compute the assignment for ``snapshot`` with ``seed``.

        Raises:
            SnapshotError: If the snapshot is malformed. Nothing is returned
                in that case, not even a partial outcome.
        """
        problems = validate_snapshot(snapshot)
        if problems:
            raise SnapshotError(problems)

        tracker = _ProgressTracker(
            on_progress, total=len(snapshot.students) * self.attempts, batch=self.progress_batch
        )
        best: Optional[AssignmentOutcome] = None
        for attempt_seed in self._attempt_seeds(seed):
            outcome = self._run_once(snapshot, attempt_seed, tracker)
            if best is None or outcome.cost < best.cost:
                best = outcome
        tracker.finish()

        result = AssignmentOutcome(
            seed=best.seed,
            assignments=best.assignments,
            skipped_pins=best.skipped_pins,
            not_placed=best.not_placed,
            no_choices=best.no_choices,
            draw_order=best.draw_order,
            cost=best.cost,
            attempts=self.attempts,
        )
        logger.info(
            "Lottery for event %s: %d placed, %d not placed, %d without choices, %d pins skipped",
            snapshot.event_id,
            result.placed_count,
            len(result.not_placed),
            len(result.no_choices),
            len(result.skipped_pins),
        )
        return result

    def _attempt_seeds(self, seed: int) -> List[int]:
        if self.attempts == 1:
            return [seed]
        seeder = random.Random(seed)
        return [seed] + [seeder.getrandbits(LotteryDefaults.SEED_BITS) for _ in range(self.attempts - 1)]

    def _run_once(
        self,
        snapshot: LotterySnapshot,
        seed: int,
        tracker: _ProgressTracker,
    ) -> AssignmentOutcome:
        rng = random.Random(seed)
        remaining: Dict[int, int] = {p.position_id: max(p.slots, 0) for p in snapshot.positions}
        slots_by_position = {p.position_id: p.slots for p in snapshot.positions}
        ranked = {s.student_id: s.ranked_preferences() for s in snapshot.students}

        assignments: List[Assignment] = []
        assigned: Set[int] = set()
        skipped: List[SkippedPin] = []

        # Pin pass
        pinned_per_position: Counter = Counter()
        for pin in snapshot.pins:
            if pin.student_id in assigned:
                skipped.append(SkippedPin(pin.student_id, pin.position_id, PinSkipReason.ALREADY_PINNED))
                continue
            if remaining[pin.position_id] <= 0:
                skipped.append(SkippedPin(pin.student_id, pin.position_id, PinSkipReason.CAPACITY_EXHAUSTED))
                continue
            remaining[pin.position_id] -= 1
            pinned_per_position[pin.position_id] += 1
            assigned.add(pin.student_id)
            assignments.append(Assignment(
                pin.student_id,
                pin.position_id,
                ResultOrigin.MANUAL_PIN,
                _rank_of(ranked[pin.student_id], pin.position_id),
            ))

        # Prefill pass
        for quota in snapshot.quotas:
            if quota.percentage == 0:
                continue
            position_id = quota.position_id
            reserved = quota.percentage * max(slots_by_position[position_id], 0) // 100
            to_fill = min(max(reserved - pinned_per_position[position_id], 0), remaining[position_id])
            if to_fill == 0:
                continue
            candidates = [
                student.student_id
                for student in snapshot.students
                if student.student_id not in assigned
                and _in_top_choices(ranked[student.student_id], position_id, self.top_choices)
            ]
            chosen = rng.sample(candidates, min(to_fill, len(candidates)))
            for student_id in chosen:
                remaining[position_id] -= 1
                assigned.add(student_id)
                assignments.append(Assignment(
                    student_id,
                    position_id,
                    ResultOrigin.LOTTERY_PREFILL,
                    _rank_of(ranked[student_id], position_id),
                ))

        no_choices = tuple(
            s.student_id for s in snapshot.students if s.student_id not in assigned and not s.preferences
        )
        pool = [s for s in snapshot.students if s.student_id not in assigned and s.preferences]
        tracker.advance(len(snapshot.students) - len(pool))

        draw_order = self._priority_order(pool, rng)

        # Rank-greedy draw
        not_placed: List[int] = []
        cost = 0
        for student_id in draw_order:
            placed = False
            for pref in ranked[student_id]:
                if remaining[pref.position_id] > 0:
                    remaining[pref.position_id] -= 1
                    assignments.append(Assignment(student_id, pref.position_id, ResultOrigin.LOTTERY_RANK, pref.rank))
                    cost += pref.rank
                    placed = True
                    break
            if not placed:
                not_placed.append(student_id)
            tracker.advance()

        max_rank = max((pref.rank for prefs in ranked.values() for pref in prefs), default=0)
        cost += (max_rank + 1) * len(not_placed)

        return AssignmentOutcome(
            seed=seed,
            assignments=tuple(assignments),
            skipped_pins=tuple(skipped),
            not_placed=tuple(not_placed),
            no_choices=no_choices,
            draw_order=tuple(draw_order),
            cost=cost,
        )

    def _priority_order(self, pool: Sequence[StudentEntry], rng: random.Random) -> List[int]:
        if self.grade_order is GradeOrder.NONE:
            order = [s.student_id for s in pool]
            rng.shuffle(order)
            return order

        groups: Dict[Optional[int], List[int]] = {}
        for student in pool:
            groups.setdefault(student.grade, []).append(student.student_id)

        known = sorted(
            (grade for grade in groups if grade is not None),
            reverse=self.grade_order is GradeOrder.DESCENDING,
        )
        # Students without a known grade go last under either order
        ordered_grades: List[Optional[int]] = list(known)
        if None in groups:
            ordered_grades.append(None)

        order: List[int] = []
        for grade in ordered_grades:
            group = groups[grade]
            rng.shuffle(group)
            order.extend(group)
        return order


def _rank_of(preferences: Iterable[PreferenceEntry], position_id: int) -> Optional[int]:
    for pref in preferences:
        if pref.position_id == position_id:
            return pref.rank
    return None


def _in_top_choices(preferences: Sequence[PreferenceEntry], position_id: int, top: int) -> bool:
    return any(pref.position_id == position_id for pref in preferences[:top])
