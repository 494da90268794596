import random

import pytest

from hallway.data.meeting_manager import MeetingManager
from hallway.data.topic_manager import TopicManager
from hallway.models.ballot import BallotEntry
from hallway.services.errors import (
    AccessDenied,
    BallotsOutstanding,
    DuplicateSubmission,
    IllegalTransition,
    IncompleteTopicSlate,
    InsufficientParticipants,
    InvalidBallot,
    StaleOperation,
)
from hallway.services.meeting_locks import MeetingLockRegistry
from hallway.services.ranking_engine import RankingEngine


def _topics_for(*participant_ids):
    return {pid: [f"{pid}1", f"{pid}2", f"{pid}3"] for pid in participant_ids}


async def _checked_in_meeting(db_session, engine, participant_ids, checked_in=None):
    manager = MeetingManager(db_session)
    organizer = participant_ids[0]
    meeting = manager.create_meeting("Weekly sync", organizer)
    for participant_id in participant_ids[1:]:
        manager.register(meeting.meeting_id, participant_id)
    await engine.open_check_in(meeting.meeting_id)
    for participant_id in checked_in or participant_ids:
        await engine.check_in(meeting.meeting_id, participant_id)
    return meeting.meeting_id


async def _ranking_meeting(db_session, engine, participant_ids):
    meeting_id = await _checked_in_meeting(db_session, engine, participant_ids)
    await engine.form_cohorts(meeting_id)
    snapshot = await engine.open_ranking(meeting_id)
    return meeting_id, snapshot


def _label_ballot(slate, first_label, last_label):
    by_label = {entry["label"]: entry["entry_id"] for entry in slate["entries"]}
    middle = [
        entry["entry_id"]
        for entry in slate["entries"]
        if entry["label"] not in {first_label, last_label}
    ]
    return [by_label[first_label]] + middle + [by_label[last_label]]


@pytest.mark.anyio("asyncio")
async def test_three_member_cohort_selects_unanimous_favourite(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    meeting_id, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])

    assert snapshot["phase"] == "ranking_in_progress"
    assert len(snapshot["cohorts"]) == 1
    cohort_id = snapshot["cohorts"][0]["cohort_id"]
    assert sorted(snapshot["cohorts"][0]["members"]) == ["A", "B", "C"]

    slate = ranking_engine.get_slate(cohort_id, "A")
    assert len(slate["entries"]) == 9
    ballot = _label_ballot(slate, "A1", "C3")

    receipts = []
    for voter in ("A", "B", "C"):
        receipts.append(await ranking_engine.submit_ballot(cohort_id, voter, ballot))

    assert not receipts[0].cohort_resolved
    assert receipts[1].ballots_received == 2
    final = receipts[-1]
    assert final.cohort_resolved
    assert final.meeting_resolved

    by_label = {entry["label"]: entry["entry_id"] for entry in slate["entries"]}
    assert by_label["A1"] in final.result.selected_entry_ids
    assert by_label["C3"] not in final.result.selected_entry_ids
    assert final.result.total_points == 108
    assert ranking_engine.meeting_snapshot(meeting_id)["phase"] == "resolved"


@pytest.mark.anyio("asyncio")
async def test_four_checked_in_forms_one_cohort_and_defers_one(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C", "D"))
    meeting_id = await _checked_in_meeting(db_session, ranking_engine, ["A", "B", "C", "D"])

    snapshot = await ranking_engine.form_cohorts(meeting_id)

    assert snapshot["phase"] == "cohorts_formed"
    assert len(snapshot["cohorts"]) == 1
    assert len(snapshot["deferred"]) == 1
    members = set(snapshot["cohorts"][0]["members"])
    assert members | set(snapshot["deferred"]) == {"A", "B", "C", "D"}
    assert not members & set(snapshot["deferred"])


@pytest.mark.anyio("asyncio")
async def test_deferred_participant_is_checked_into_next_round(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C", "D"))
    meeting_id = await _checked_in_meeting(db_session, ranking_engine, ["A", "B", "C", "D"])
    formed = await ranking_engine.form_cohorts(meeting_id)
    deferred = formed["deferred"][0]
    cohort = formed["cohorts"][0]
    await ranking_engine.open_ranking(meeting_id)

    slate = ranking_engine.get_slate(cohort["cohort_id"], cohort["members"][0])
    ballot = [entry["entry_id"] for entry in slate["entries"]]
    for voter in cohort["members"]:
        await ranking_engine.submit_ballot(cohort["cohort_id"], voter, ballot)

    snapshot = await ranking_engine.open_next_round(meeting_id)
    assert snapshot["phase"] == "checking_in"
    assert snapshot["round_number"] == 2
    assert snapshot["checked_in"] == [deferred]
    assert snapshot["cohorts"] == []


@pytest.mark.anyio("asyncio")
async def test_ballot_missing_an_entry_is_rejected_without_side_effects(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    meeting_id, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])
    cohort_id = snapshot["cohorts"][0]["cohort_id"]
    slate = ranking_engine.get_slate(cohort_id, "B")
    entry_ids = [entry["entry_id"] for entry in slate["entries"]]

    with pytest.raises(InvalidBallot) as excinfo:
        await ranking_engine.submit_ballot(cohort_id, "B", entry_ids[:-1])

    assert excinfo.value.missing == [entry_ids[-1]]
    assert ranking_engine.meeting_snapshot(meeting_id)["phase"] == "ranking_in_progress"
    assert db_session.query(BallotEntry).filter_by(cohort_id=cohort_id).count() == 0


@pytest.mark.anyio("asyncio")
async def test_resolution_is_idempotent(db_session, ranking_engine, seed_participants):
    seed_participants(_topics_for("A", "B", "C"))
    _, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])
    cohort_id = snapshot["cohorts"][0]["cohort_id"]
    ballot = [entry["entry_id"] for entry in ranking_engine.get_slate(cohort_id, "A")["entries"]]
    for voter in ("A", "B", "C"):
        receipt = await ranking_engine.submit_ballot(cohort_id, voter, list(reversed(ballot)))

    first = await ranking_engine.resolve_cohort(cohort_id)
    second = await ranking_engine.resolve_cohort(cohort_id)

    assert first == second == receipt.result
    assert ranking_engine.compute_result(cohort_id) == first
    assert ranking_engine.get_result(cohort_id) == first


@pytest.mark.anyio("asyncio")
async def test_resolve_before_all_ballots_reports_outstanding_voters(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    _, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])
    cohort_id = snapshot["cohorts"][0]["cohort_id"]
    ballot = [entry["entry_id"] for entry in ranking_engine.get_slate(cohort_id, "A")["entries"]]
    await ranking_engine.submit_ballot(cohort_id, "A", ballot)

    with pytest.raises(BallotsOutstanding) as excinfo:
        await ranking_engine.resolve_cohort(cohort_id)
    assert excinfo.value.pending_voters == ["B", "C"]
    assert ranking_engine.get_result(cohort_id) is None


@pytest.mark.anyio("asyncio")
async def test_resubmission_replaces_ballot_until_resolved(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    _, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])
    cohort_id = snapshot["cohorts"][0]["cohort_id"]
    ballot = [entry["entry_id"] for entry in ranking_engine.get_slate(cohort_id, "A")["entries"]]

    await ranking_engine.submit_ballot(cohort_id, "A", ballot)
    receipt = await ranking_engine.submit_ballot(cohort_id, "A", list(reversed(ballot)))
    assert receipt.ballots_received == 1
    assert ranking_engine.get_slate(cohort_id, "A")["own_ballot"] == list(reversed(ballot))

    await ranking_engine.submit_ballot(cohort_id, "B", ballot)
    await ranking_engine.submit_ballot(cohort_id, "C", ballot)

    with pytest.raises(DuplicateSubmission):
        await ranking_engine.submit_ballot(cohort_id, "A", ballot)
    assert ranking_engine.get_slate(cohort_id, "A")["own_ballot"] == list(reversed(ballot))


@pytest.mark.anyio("asyncio")
async def test_non_member_cannot_vote_or_view_slate(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C", "Z"))
    _, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])
    cohort_id = snapshot["cohorts"][0]["cohort_id"]

    with pytest.raises(AccessDenied):
        ranking_engine.get_slate(cohort_id, "Z")
    with pytest.raises(AccessDenied):
        await ranking_engine.submit_ballot(cohort_id, "Z", [])


@pytest.mark.anyio("asyncio")
async def test_check_in_after_roster_froze_is_stale(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C", "D"))
    meeting_id = await _checked_in_meeting(
        db_session, ranking_engine, ["A", "B", "C", "D"], checked_in=["A", "B", "C"]
    )
    await ranking_engine.form_cohorts(meeting_id)

    with pytest.raises(StaleOperation):
        await ranking_engine.check_in(meeting_id, "D")
    with pytest.raises(StaleOperation):
        await ranking_engine.withdraw_check_in(meeting_id, "A")


@pytest.mark.anyio("asyncio")
async def test_too_few_checked_in_keeps_meeting_open(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    meeting_id = await _checked_in_meeting(
        db_session, ranking_engine, ["A", "B", "C"], checked_in=["A", "B"]
    )

    with pytest.raises(InsufficientParticipants):
        await ranking_engine.form_cohorts(meeting_id)
    assert ranking_engine.meeting_snapshot(meeting_id)["phase"] == "checking_in"

    snapshot = await ranking_engine.withdraw_check_in(meeting_id, "B")
    assert snapshot["checked_in"] == ["A"]


@pytest.mark.anyio("asyncio")
async def test_operations_out_of_phase_are_refused(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    meeting = MeetingManager(db_session).create_meeting("Planning", "A")

    with pytest.raises(IllegalTransition):
        await ranking_engine.check_in(meeting.meeting_id, "A")
    with pytest.raises(IllegalTransition):
        await ranking_engine.open_ranking(meeting.meeting_id)
    with pytest.raises(IllegalTransition):
        await ranking_engine.open_next_round(meeting.meeting_id)


@pytest.mark.anyio("asyncio")
async def test_check_in_requires_registration(db_session, ranking_engine, seed_participants):
    seed_participants(_topics_for("A", "B", "C", "Z"))
    meeting_id = await _checked_in_meeting(db_session, ranking_engine, ["A", "B", "C"])
    with pytest.raises(AccessDenied):
        await ranking_engine.check_in(meeting_id, "Z")


@pytest.mark.anyio("asyncio")
async def test_pad_policy_places_placeholders_on_slate(
    db_session, ranking_engine, seed_participants
):
    seed_participants({"A": ["A1"], "B": ["B1", "B2", "B3"], "C": ["C1", "C2", "C3"]})
    _, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])
    cohort_id = snapshot["cohorts"][0]["cohort_id"]

    entries = ranking_engine.get_slate(cohort_id, "A")["entries"]
    assert len(entries) == 9
    placeholders = [entry for entry in entries if entry["is_placeholder"]]
    assert len(placeholders) == 2
    assert {entry["contributor_id"] for entry in placeholders} == {"A"}

    # Placeholders ranked first everywhere are still passed over.
    ordered = [entry["entry_id"] for entry in placeholders] + [
        entry["entry_id"] for entry in entries if not entry["is_placeholder"]
    ]
    for voter in ("A", "B", "C"):
        receipt = await ranking_engine.submit_ballot(cohort_id, voter, ordered)
    selected = set(receipt.result.selected_entry_ids)
    assert not selected & {entry["entry_id"] for entry in placeholders}
    assert len(selected) == 2


@pytest.mark.anyio("asyncio")
async def test_reject_policy_refuses_check_in_with_too_few_topics(
    db_session, seed_participants
):
    seed_participants({"A": ["A1", "A2", "A3"], "B": ["B1", "B2"], "C": ["C1", "C2", "C3"]})
    engine = RankingEngine(
        db_session,
        rng=random.Random(1),
        locks=MeetingLockRegistry(),
        undersized_policy="reject",
    )
    meeting_id = await _checked_in_meeting(
        db_session, engine, ["A", "B", "C"], checked_in=["A", "C"]
    )

    with pytest.raises(IncompleteTopicSlate) as excinfo:
        await engine.check_in(meeting_id, "B")
    assert excinfo.value.participant_id == "B"
    assert engine.meeting_snapshot(meeting_id)["checked_in"] == ["A", "C"]


@pytest.mark.anyio("asyncio")
async def test_seeded_engines_form_identical_cohorts(db_session, seed_participants):
    participants = ["A", "B", "C", "D", "E", "F"]
    seed_participants(_topics_for(*participants))
    engine = RankingEngine(
        db_session, rng=random.Random(99), locks=MeetingLockRegistry(), undersized_policy="pad"
    )
    meeting_id = await _checked_in_meeting(db_session, engine, participants)
    snapshot = await engine.form_cohorts(meeting_id)

    expected = RankingEngine(db_session, rng=random.Random(99)).partitioner.partition(
        participants
    )
    assert [tuple(cohort["members"]) for cohort in snapshot["cohorts"]] == list(
        expected.cohorts
    )


def _reject_engine(db_session, seed):
    return RankingEngine(
        db_session,
        rng=random.Random(seed),
        locks=MeetingLockRegistry(),
        undersized_policy="reject",
    )


async def _vote_everyone(engine, cohort):
    ballot = [
        entry["entry_id"]
        for entry in engine.get_slate(cohort["cohort_id"], cohort["members"][0])["entries"]
    ]
    receipts = []
    for voter in cohort["members"]:
        receipts.append(await engine.submit_ballot(cohort["cohort_id"], voter, ballot))
    return receipts[-1]


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("seed", [0, 1, 9, 10])
async def test_reject_policy_leaves_out_member_who_deleted_a_topic(
    db_session, seed_participants, seed
):
    seed_participants(_topics_for("A", "B", "C", "D"))
    engine = _reject_engine(db_session, seed)
    meeting_id = await _checked_in_meeting(db_session, engine, ["A", "B", "C", "D"])
    topics = TopicManager(db_session)
    topics.delete_topic(topics.list_topics("D")[0].topic_id, "D")

    snapshot = await engine.form_cohorts(meeting_id)

    assert snapshot["phase"] == "cohorts_formed"
    assert snapshot["excluded"] == ["D"]
    assert sorted(snapshot["cohorts"][0]["members"]) == ["A", "B", "C"]
    assert snapshot["deferred"] == []
    assert "D" not in snapshot["checked_in"]


@pytest.mark.anyio("asyncio")
async def test_reject_policy_exclusion_can_leave_too_few_members(
    db_session, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    engine = _reject_engine(db_session, 3)
    meeting_id = await _checked_in_meeting(db_session, engine, ["A", "B", "C"])
    topics = TopicManager(db_session)
    topics.delete_topic(topics.list_topics("C")[0].topic_id, "C")

    with pytest.raises(InsufficientParticipants):
        await engine.form_cohorts(meeting_id)

    snapshot = engine.meeting_snapshot(meeting_id)
    assert snapshot["phase"] == "checking_in"
    assert snapshot["checked_in"] == ["A", "B", "C"]


@pytest.mark.anyio("asyncio")
async def test_meeting_resolves_only_after_every_cohort(
    db_session, ranking_engine, seed_participants
):
    participants = ["A", "B", "C", "D", "E", "F"]
    seed_participants(_topics_for(*participants))
    meeting_id, snapshot = await _ranking_meeting(db_session, ranking_engine, participants)
    first, second = snapshot["cohorts"]

    receipt = await _vote_everyone(ranking_engine, first)
    assert receipt.cohort_resolved
    assert not receipt.meeting_resolved
    state = ranking_engine.meeting_snapshot(meeting_id)
    assert state["phase"] == "ranking_in_progress"
    assert [cohort["status"] for cohort in state["cohorts"]] == ["resolved", "collecting"]

    receipt = await _vote_everyone(ranking_engine, second)
    assert receipt.cohort_resolved
    assert receipt.meeting_resolved
    assert ranking_engine.meeting_snapshot(meeting_id)["phase"] == "resolved"


@pytest.mark.anyio("asyncio")
async def test_resolved_meetings_leave_no_locks_behind(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C", "D", "E", "F"))
    for members in (["A", "B", "C"], ["D", "E", "F"], ["A", "C", "E"]):
        _, snapshot = await _ranking_meeting(db_session, ranking_engine, members)
        receipt = await _vote_everyone(ranking_engine, snapshot["cohorts"][0])
        assert receipt.meeting_resolved
        # A late ballot is refused without re-creating the cohort lock.
        with pytest.raises(DuplicateSubmission):
            await _vote_everyone(ranking_engine, snapshot["cohorts"][0])

    assert await ranking_engine.locks.snapshot() == {}


@pytest.mark.anyio("asyncio")
async def test_result_recomputes_the_same_after_a_topic_is_deleted(
    db_session, ranking_engine, seed_participants
):
    seed_participants(_topics_for("A", "B", "C"))
    _, snapshot = await _ranking_meeting(db_session, ranking_engine, ["A", "B", "C"])
    cohort_id = snapshot["cohorts"][0]["cohort_id"]
    entries = ranking_engine.get_slate(cohort_id, "A")["entries"]
    by_label = {entry["label"]: entry["entry_id"] for entry in entries}
    rest = [by_label[label] for label in ("A2", "A3", "B2", "B3", "C2", "C3")]

    # A1, B1 and C1 tie on points; the lowest topic ids win.
    cycles = {"A": ["A1", "B1", "C1"], "B": ["B1", "C1", "A1"], "C": ["C1", "A1", "B1"]}
    for voter, top in cycles.items():
        receipt = await ranking_engine.submit_ballot(
            cohort_id, voter, [by_label[label] for label in top] + rest
        )
    stored = receipt.result
    assert stored.selected_entry_ids == (by_label["A1"], by_label["B1"])

    topics = TopicManager(db_session)
    deleted = next(topic for topic in topics.list_topics("A") if topic.text == "A1")
    topics.delete_topic(deleted.topic_id, "A")

    slate = ranking_engine.get_slate(cohort_id, "A")
    assert next(e for e in slate["entries"] if e["label"] == "A1")["topic_id"] is None
    assert ranking_engine.compute_result(cohort_id) == stored
    assert await ranking_engine.resolve_cohort(cohort_id) == stored
