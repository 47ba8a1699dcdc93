"""Tests for the participant lifecycle service."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.bmnl.lifecycle import ParticipantService, normalize_email
from src.bmnl.questionnaire import DIMENSIONS, Questionnaire
from src.core.config import Settings
from src.core.encryption import AnswerCipher
from src.core.errors import (
    ConsentRequired,
    Forbidden,
    IncompleteAssessment,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from src.core.models import Answer, AnswerSignal, Flag, FlagType, ParticipantStatus, RadarProfile, SignalLevel
from src.security.consent.models import ConsentType
from src.security.consent.service import ConsentLedger

STRONG_ANSWER = (
    "I would volunteer for two shifts because I want to contribute to the camp and help build "
    "something together. I have learned that asking people what they need works better than "
    "guessing, so I try to check in with others, listen carefully, and take a break when I feel "
    "overwhelmed by the noise."
)
WEAK_ANSWER = "I would help out."


async def _started(service: ParticipantService, email: str = "Person@Example.com") -> uuid.UUID:
    participant = await service.create(email)
    await service.start_assessment(participant.id)
    return participant.id


async def _answer_all(service: ParticipantService, participant_id: uuid.UUID, text: str = STRONG_ANSWER) -> None:
    for number in (1, 2, 3, 4):
        await service.submit_answer(participant_id, number, text)


class TestNormalizeEmail:
    def test_strips_and_lowercases(self) -> None:
        assert normalize_email("  Someone@Example.COM ") == "someone@example.com"

    @pytest.mark.parametrize("bad", ["", "not-an-email", "a@", "@example.com"])
    def test_rejects_malformed(self, bad: str) -> None:
        with pytest.raises(ValidationFailed):
            normalize_email(bad)


class TestCreate:
    async def test_new_participant_is_pending_with_consent(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        participant = await participant_service.create("New@Example.com")

        assert participant.status == ParticipantStatus.PENDING
        assert participant.email == "new@example.com"
        assert participant.consent_granted_at is not None
        assert participant.auto_delete_at is not None
        record = await ConsentLedger(db_session).current_consent(participant.id, ConsentType.ASSESSMENT)
        assert record is not None

    async def test_idempotent_per_email(self, participant_service: ParticipantService, db_session: AsyncSession) -> None:
        first = await participant_service.create("same@example.com")
        second = await participant_service.create("SAME@example.com")

        assert first.id == second.id
        history = await ConsentLedger(db_session).history(first.id)
        assert [r.consent_type for r in history] == [ConsentType.ASSESSMENT, ConsentType.ASSESSMENT]

    async def test_repeat_create_links_auth_user(self, participant_service: ParticipantService) -> None:
        user_id = uuid.uuid4()
        first = await participant_service.create("link@example.com")
        assert first.auth_user_id is None

        second = await participant_service.create("link@example.com", auth_user_id=user_id)
        assert second.id == first.id
        assert second.auth_user_id == user_id

    async def test_another_account_cannot_claim_participant(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        owner = uuid.uuid4()
        owned = await participant_service.create("owned@example.com", auth_user_id=owner)

        with pytest.raises(Forbidden):
            await participant_service.create("owned@example.com", auth_user_id=uuid.uuid4())

        assert owned.auth_user_id == owner
        history = await ConsentLedger(db_session).history(owned.id)
        assert len(history) == 1

    async def test_owner_repeat_create_is_idempotent(self, participant_service: ParticipantService) -> None:
        owner = uuid.uuid4()
        first = await participant_service.create("mine@example.com", auth_user_id=owner)
        second = await participant_service.create("MINE@example.com", auth_user_id=owner)
        assert second.id == first.id

    async def test_new_participant_allowed_after_deletion(self, participant_service: ParticipantService) -> None:
        first = await participant_service.create("again@example.com")
        await participant_service.request_deletion(first.id)

        second = await participant_service.create("again@example.com")
        assert second.id != first.id
        assert second.status == ParticipantStatus.PENDING

    async def test_invalid_email(self, participant_service: ParticipantService) -> None:
        with pytest.raises(ValidationFailed):
            await participant_service.create("nope")


class TestStateMachine:
    async def test_start_moves_to_in_progress(self, participant_service: ParticipantService) -> None:
        participant = await participant_service.create("start@example.com")
        started = await participant_service.start_assessment(participant.id)
        assert started.status == ParticipantStatus.IN_PROGRESS
        assert started.assessment_started_at is not None

    async def test_start_twice_rejected(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        with pytest.raises(InvalidState):
            await participant_service.start_assessment(pid)

    async def test_submit_before_start_rejected(self, participant_service: ParticipantService) -> None:
        participant = await participant_service.create("early@example.com")
        with pytest.raises(InvalidState):
            await participant_service.submit_answer(participant.id, 1, STRONG_ANSWER)

    async def test_complete_before_start_rejected(self, participant_service: ParticipantService) -> None:
        participant = await participant_service.create("pending@example.com")
        with pytest.raises(InvalidState):
            await participant_service.complete(participant.id)

    async def test_unknown_participant(self, participant_service: ParticipantService) -> None:
        with pytest.raises(NotFound):
            await participant_service.start_assessment(uuid.uuid4())

    async def test_deleted_participant_hidden(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        await participant_service.request_deletion(pid)

        with pytest.raises(NotFound):
            await participant_service.get(pid)
        with pytest.raises(NotFound):
            await participant_service.submit_answer(pid, 1, STRONG_ANSWER)
        deleted = await participant_service.get(pid, include_deleted=True)
        assert deleted.status == ParticipantStatus.DELETED

    async def test_request_deletion_schedules_erasure_and_revokes(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        pid = await _started(participant_service)
        participant = await participant_service.request_deletion(pid, ip_address="10.0.0.1")

        assert participant.manually_deleted_at is not None
        assert participant.erasure_scheduled_at is not None
        assert (participant.erasure_scheduled_at - participant.manually_deleted_at).days == 30
        latest = await ConsentLedger(db_session).latest(pid, ConsentType.DATA_PROCESSING)
        assert latest is not None and latest.granted is False and latest.ip_address == "10.0.0.1"

        with pytest.raises(InvalidState):
            await participant_service.request_deletion(pid)


class TestSubmitAnswer:
    async def test_plain_answer_stored_as_is(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        pid = await _started(participant_service)
        result = await participant_service.submit_answer(pid, 1, STRONG_ANSWER)

        assert result.encrypted is False
        assert result.signal_level == SignalLevel.MASTERING
        assert result.flags == []
        row = (await db_session.execute(select(Answer).where(Answer.participant_id == pid))).scalar_one()
        assert row.raw_answer == STRONG_ANSWER
        assert row.question_text == "Why do you want to join?"

    async def test_configured_sensitive_question_encrypted(
        self, participant_service: ParticipantService, db_session: AsyncSession, cipher: AnswerCipher
    ) -> None:
        pid = await _started(participant_service)
        result = await participant_service.submit_answer(pid, 3, STRONG_ANSWER)

        assert result.encrypted is True
        assert result.answer.raw_answer != STRONG_ANSWER
        assert cipher.decrypt(result.answer.raw_answer) == STRONG_ANSWER

    async def test_sensitive_content_encrypted(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        result = await participant_service.submit_answer(pid, 1, "I deal with anxiety, so I rest often.")
        assert result.encrypted is True

    async def test_explicit_sensitivity_wins(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        forced = await participant_service.submit_answer(pid, 1, STRONG_ANSWER, is_sensitive=True)
        assert forced.encrypted is True
        relaxed = await participant_service.submit_answer(pid, 3, STRONG_ANSWER, is_sensitive=False)
        assert relaxed.encrypted is False

    async def test_same_answer_encrypts_differently(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        first = (await participant_service.submit_answer(pid, 3, STRONG_ANSWER)).answer.raw_answer
        second = (await participant_service.submit_answer(pid, 3, STRONG_ANSWER)).answer.raw_answer
        assert first != second

    async def test_resubmission_overwrites(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        pid = await _started(participant_service)
        await participant_service.submit_answer(pid, 1, WEAK_ANSWER)
        await participant_service.submit_answer(pid, 1, STRONG_ANSWER)

        answers = (await db_session.execute(select(Answer).where(Answer.participant_id == pid))).scalars().all()
        assert [a.raw_answer for a in answers] == [STRONG_ANSWER]
        signal = (await db_session.execute(select(AnswerSignal).where(AnswerSignal.participant_id == pid))).scalar_one()
        assert signal.signal_level == SignalLevel.MASTERING

    async def test_unknown_question(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        with pytest.raises(NotFound):
            await participant_service.submit_answer(pid, 12, STRONG_ANSWER)

    async def test_blank_answer(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        with pytest.raises(ValidationFailed):
            await participant_service.submit_answer(pid, 1, "   ")

    async def test_flags_do_not_block_and_mark_review(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        result = await participant_service.submit_answer(pid, 2, "asdf")

        assert [f.flag_type for f in result.flags] == [FlagType.GARBAGE]
        assert result.needs_human_review is True
        assert result.signal_level == SignalLevel.LOW
        participant = await participant_service.get(pid)
        assert participant.needs_human_review is True

    async def test_reviewed_flags_survive_resubmission(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        pid = await _started(participant_service)
        first = await participant_service.submit_answer(pid, 2, "asdf")
        reviewer = uuid.uuid4()
        await participant_service.review_flag(first.flags[0].id, reviewer=reviewer)

        await participant_service.submit_answer(pid, 2, "Honestly, not my problem.")
        flags = await participant_service.list_flags(pid)
        assert [f.flag_type for f in flags] == [FlagType.GARBAGE, FlagType.DEFENSIVE]
        assert flags[0].reviewed_by == reviewer

        await participant_service.submit_answer(pid, 2, STRONG_ANSWER)
        remaining = (await db_session.execute(select(Flag).where(Flag.participant_id == pid))).scalars().all()
        assert [f.flag_type for f in remaining] == [FlagType.GARBAGE]

    async def test_review_flag_twice_rejected(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        flag = (await participant_service.submit_answer(pid, 1, "asdf")).flags[0]
        await participant_service.review_flag(flag.id)
        with pytest.raises(InvalidState):
            await participant_service.review_flag(flag.id)
        with pytest.raises(NotFound):
            await participant_service.review_flag(uuid.uuid4())


class TestComplete:
    async def test_complete_produces_radar(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        await _answer_all(participant_service, pid)

        profile = await participant_service.complete(pid)

        assert {dim: getattr(profile, dim) for dim in DIMENSIONS} == {dim: 1.0 for dim in DIMENSIONS}
        assert profile.gate_experience == 1.0
        assert profile.scoring_version == "v1"
        participant = await participant_service.get(pid)
        assert participant.status == ParticipantStatus.COMPLETED
        assert participant.assessment_completed_at is not None

    async def test_complete_with_encrypted_answers_never_decrypts(
        self, participant_service: ParticipantService, monkeypatch: pytest.MonkeyPatch, cipher: AnswerCipher
    ) -> None:
        pid = await _started(participant_service)
        await _answer_all(participant_service, pid)

        def _boom(_: str) -> str:
            raise AssertionError("decrypt called while scoring")

        monkeypatch.setattr(cipher, "decrypt", _boom)
        profile = await participant_service.complete(pid)
        assert profile.participation == 1.0

    async def test_missing_answers(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        await participant_service.submit_answer(pid, 1, STRONG_ANSWER)
        await participant_service.submit_answer(pid, 3, STRONG_ANSWER)

        with pytest.raises(IncompleteAssessment) as exc_info:
            await participant_service.complete(pid)
        assert exc_info.value.missing == [2, 4]
        assert (await participant_service.get(pid)).status == ParticipantStatus.IN_PROGRESS

    async def test_complete_again_is_stable(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        await _answer_all(participant_service, pid, WEAK_ANSWER)

        first = await participant_service.complete(pid)
        snapshot = {dim: getattr(first, dim) for dim in (*DIMENSIONS, "gate_experience")}
        second = await participant_service.complete(pid)

        assert second.id == first.id
        assert {dim: getattr(second, dim) for dim in (*DIMENSIONS, "gate_experience")} == snapshot
        assert snapshot["gate_experience"] == 0.0

    async def test_submit_after_completion_rejected(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        await _answer_all(participant_service, pid)
        await participant_service.complete(pid)
        with pytest.raises(InvalidState):
            await participant_service.submit_answer(pid, 1, STRONG_ANSWER)

    async def test_revoked_assessment_consent_blocks_completion(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        pid = await _started(participant_service)
        await _answer_all(participant_service, pid)
        await ConsentLedger(db_session).record_consent(pid, ConsentType.ASSESSMENT, False)

        with pytest.raises(ConsentRequired):
            await participant_service.complete(pid)


class TestRadarReads:
    async def test_get_radar_before_completion(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        assert await participant_service.get_radar(pid) is None

    async def test_public_radar_requires_consent(
        self, participant_service: ParticipantService, db_session: AsyncSession
    ) -> None:
        pid = await _started(participant_service)
        await _answer_all(participant_service, pid)
        await participant_service.complete(pid)

        with pytest.raises(ConsentRequired):
            await participant_service.public_radar(pid)

        await ConsentLedger(db_session).record_consent(pid, ConsentType.PUBLIC_RADAR, True)
        levels = await participant_service.public_radar(pid)
        assert levels["participation"] == "mastering"
        assert levels["gate_experience"] == "basic"

    async def test_public_radar_needs_completed_assessment(self, participant_service: ParticipantService) -> None:
        pid = await _started(participant_service)
        with pytest.raises(InvalidState):
            await participant_service.public_radar(pid)


class TestOverview:
    async def test_counts_and_flagged_participants(self, participant_service: ParticipantService) -> None:
        flagged = await _started(participant_service, "flagged@example.com")
        await participant_service.submit_answer(flagged, 1, "asdf")
        done = await _started(participant_service, "done@example.com")
        await _answer_all(participant_service, done)
        await participant_service.complete(done)
        await participant_service.create("waiting@example.com")

        overview = await participant_service.overview()

        assert overview["counts"] == {"pending": 1, "in_progress": 1, "completed": 1, "deleted": 0}
        assert overview["gate_experience"] == {"basic": 1, "needs_orientation": 0}
        assert [p["email"] for p in overview["flagged_participants"]] == ["flagged@example.com"]
        assert overview["flagged_participants"][0]["unreviewed_flags"] == 1

    async def test_deleted_participants_leave_gate_counts(self, participant_service: ParticipantService) -> None:
        kept = await _started(participant_service, "kept@example.com")
        await _answer_all(participant_service, kept)
        await participant_service.complete(kept)
        gone = await _started(participant_service, "gone@example.com")
        await _answer_all(participant_service, gone)
        await participant_service.complete(gone)
        await participant_service.request_deletion(gone)

        overview = await participant_service.overview()

        assert overview["gate_experience"] == {"basic": 1, "needs_orientation": 0}
        assert overview["counts"]["completed"] == 1
        assert overview["counts"]["deleted"] == 1


def _miss_first_lookup(monkeypatch: pytest.MonkeyPatch, service: ParticipantService, name: str) -> None:
    """Make the service's first lookup return nothing, as if read before a concurrent commit."""
    real = getattr(service, name)
    calls = {"count": 0}

    async def stale(*args: Any) -> Any:
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await real(*args)

    monkeypatch.setattr(service, name, stale)


class TestConcurrentWrites:
    @pytest.fixture
    def make_service(
        self, cipher: AnswerCipher, questionnaire: Questionnaire, test_settings: Settings
    ) -> Callable[[AsyncSession], ParticipantService]:
        return lambda session: ParticipantService(session, cipher, questionnaire, settings=test_settings)

    async def test_resubmission_race_is_last_write_wins(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        make_service: Callable[[AsyncSession], ParticipantService],
        cipher: AnswerCipher,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async with session_factory() as setup:
            pid = await _started(make_service(setup))
            await setup.commit()

        async with session_factory() as first:
            await make_service(first).submit_answer(pid, 1, WEAK_ANSWER)
            await first.commit()

        async with session_factory() as second:
            service = make_service(second)
            _miss_first_lookup(monkeypatch, service, "_find_answer")
            _miss_first_lookup(monkeypatch, service, "_find_signal")
            result = await service.submit_answer(pid, 1, STRONG_ANSWER)
            await second.commit()

        async with session_factory() as check:
            answers = (await check.execute(select(Answer).where(Answer.participant_id == pid))).scalars().all()
            signals = (
                (await check.execute(select(AnswerSignal).where(AnswerSignal.participant_id == pid))).scalars().all()
            )

        assert len(answers) == 1
        stored = answers[0]
        assert (cipher.decrypt(stored.raw_answer) if stored.encrypted else stored.raw_answer) == STRONG_ANSWER
        assert len(signals) == 1
        assert signals[0].signal_level == result.signal_level

    async def test_double_completion_keeps_one_profile(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        make_service: Callable[[AsyncSession], ParticipantService],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async with session_factory() as setup:
            service = make_service(setup)
            pid = await _started(service)
            await _answer_all(service, pid)
            await setup.commit()

        async with session_factory() as first:
            winner = await make_service(first).complete(pid)
            winner_id = winner.id
            winner_scores = {dim: getattr(winner, dim) for dim in DIMENSIONS}
            await first.commit()

        async with session_factory() as second:
            service = make_service(second)
            _miss_first_lookup(monkeypatch, service, "_find_profile")
            profile = await service.complete(pid)
            await second.commit()

        assert profile.id == winner_id
        assert {dim: getattr(profile, dim) for dim in DIMENSIONS} == winner_scores
        async with session_factory() as check:
            profiles = (
                (await check.execute(select(RadarProfile).where(RadarProfile.participant_id == pid))).scalars().all()
            )
        assert len(profiles) == 1
