"""Tests for the verification queue: listing, approve, reject and AI review."""

import asyncio
from datetime import UTC, datetime

import pytest

from src.core import db_client
from src.core.errors import (
    AlreadyResolvedError,
    MisconfiguredVerifierError,
    MissingProofError,
    NotFoundError,
    PermissionDeniedError,
)
from src.domain.completion import Proof
from src.domain.user import MemberRole
from src.models.service_models import Judgement
from src.services import ai_verifier, completion_service, verification_service
from src.services.streak_service import DayBoundary
from tests.factories import FakeConnection, configure_ai, create_community, create_squad, create_task, create_user


NOW = datetime(2026, 5, 4, 9, 0, tzinfo=UTC)


class FakeVerifier:
    def __init__(self, judgement: Judgement | None = None, error: Exception | None = None, delay: float = 0) -> None:
        self.judgement = judgement
        self.error = error
        self.delay = delay
        self.requests = []

    async def judge(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.judgement


@pytest.fixture
async def world(patched_db):
    """A submitter and a moderator sharing a squad, with one pending proof completion."""
    submitter = await create_user("sam")
    moderator = await create_user("mia")
    outsider = await create_user("otto")
    squad = await create_squad(members={submitter["id"]: MemberRole.MEMBER, moderator["id"]: MemberRole.MODERATOR})
    task = await create_task(submitter["id"], difficulty="medium", requires_proof=True, squad_id=squad["id"])
    result = await completion_service.complete_task(
        task_id=task["id"],
        user_id=submitter["id"],
        proof=Proof(url="https://img.example/proof.jpg"),
        now=NOW,
        day_boundary=DayBoundary(tz=UTC),
    )
    entry = await db_client.get_first_record(
        collection="verification_queue",
        filter_query=f'completion_id = "{result.completion.id}"',
    )
    return {
        "submitter": submitter,
        "moderator": moderator,
        "outsider": outsider,
        "squad": squad,
        "task": task,
        "completion": result.completion,
        "entry": entry,
    }


def use_verifier(monkeypatch, verifier):
    calls = []

    def build(*, provider, api_key, model=None):
        calls.append({"provider": provider, "api_key": api_key, "model": model})
        return verifier

    monkeypatch.setattr(ai_verifier, "build_verifier", build)
    return calls


async def total_xp(user):
    record = await db_client.get_record(collection="users", record_id=user["id"])
    return record["total_xp"]


@pytest.mark.unit
class TestListQueue:
    async def test_moderator_sees_enriched_entries(self, world):
        items = await verification_service.list_queue(user_id=world["moderator"]["id"])

        assert len(items) == 1
        assert items[0].entry.id == world["entry"]["id"]
        assert items[0].task.id == world["task"]["id"]
        assert items[0].submitter.username == "sam"
        assert items[0].completion.proof_url == "https://img.example/proof.jpg"

    async def test_plain_member_sees_nothing(self, world):
        assert await verification_service.list_queue(user_id=world["submitter"]["id"]) == []

    async def test_ordered_by_priority_then_age(self, world):
        newer = await create_task(world["submitter"]["id"], title="Stretch", requires_proof=True, squad_id=world["squad"]["id"])
        result = await completion_service.complete_task(
            task_id=newer["id"], user_id=world["submitter"]["id"], now=NOW, day_boundary=DayBoundary(tz=UTC)
        )
        await db_client.update_where(
            collection="verification_queue",
            filter_query=f'completion_id = "{result.completion.id}"',
            data={"priority": 5},
        )

        items = await verification_service.list_queue(user_id=world["moderator"]["id"])

        assert [item.completion.id for item in items] == [result.completion.id, world["completion"].id]


@pytest.mark.unit
class TestApprove:
    async def test_credits_xp_once(self, world, hub):
        submitter_socket = FakeConnection(world["submitter"]["id"])
        hub.register(submitter_socket)
        hub.join(submitter_socket.id, f"user:{world['submitter']['id']}")

        decision = await verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        assert decision.status == "verified"
        assert decision.xp_awarded == 55
        assert await total_xp(world["submitter"]) == 55

        completion = await db_client.get_record(collection="task_completions", record_id=world["completion"].id)
        assert completion["verification_status"] == "verified"
        assert completion["verified_by_id"] == world["moderator"]["id"]
        assert completion["xp_earned"] == 55

        notifications = await db_client.list_records(collection="notifications")
        assert [n["type"] for n in notifications] == ["task_verified"]
        assert submitter_socket.events_named("verification:update") == [
            {"completionId": world["completion"].id, "status": "verified"}
        ]
        assert submitter_socket.events_named("notification:new")[0]["title"] == "Task Verified!"

    async def test_second_approve_conflicts(self, world):
        await verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        with pytest.raises(AlreadyResolvedError):
            await verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        assert await total_xp(world["submitter"]) == 55
        assert await db_client.count_records(collection="xp_transactions") == 1

    async def test_concurrent_approvals_credit_once(self, world):
        results = await asyncio.gather(
            verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"]),
            verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"]),
            return_exceptions=True,
        )

        assert sum(isinstance(r, AlreadyResolvedError) for r in results) == 1
        assert await total_xp(world["submitter"]) == 55

    async def test_uses_current_multiplier(self, patched_db):
        submitter = await create_user("sam")
        admin = await create_user("ann")
        community = await create_community(
            multiplier=1.0, members={submitter["id"]: MemberRole.MEMBER, admin["id"]: MemberRole.ADMIN}
        )
        task = await create_task(submitter["id"], difficulty="hard", requires_proof=True, community_id=community["id"])
        await completion_service.complete_task(
            task_id=task["id"], user_id=submitter["id"], now=NOW, day_boundary=DayBoundary(tz=UTC)
        )
        await db_client.update_record(collection="communities", record_id=community["id"], data={"xp_multiplier": 1.5})
        entry = await db_client.get_first_record(collection="verification_queue", filter_query='status = "pending"')

        decision = await verification_service.approve(entry_id=entry["id"], actor_id=admin["id"])

        assert decision.xp_awarded == 100 + 5 + 50

    async def test_non_moderator_denied(self, world):
        with pytest.raises(PermissionDeniedError):
            await verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["submitter"]["id"])

        with pytest.raises(PermissionDeniedError):
            await verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["outsider"]["id"])

        assert await total_xp(world["submitter"]) == 0

    async def test_missing_entry(self, world):
        with pytest.raises(NotFoundError):
            await verification_service.approve(entry_id="999", actor_id=world["moderator"]["id"])


@pytest.mark.unit
class TestReject:
    async def test_reject_records_reason_without_xp(self, world):
        decision = await verification_service.reject(
            entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"], reason="Blurry photo"
        )

        assert decision.status == "rejected"
        assert decision.xp_awarded == 0
        assert await total_xp(world["submitter"]) == 0

        completion = await db_client.get_record(collection="task_completions", record_id=world["completion"].id)
        assert completion["verification_status"] == "rejected"
        assert completion["rejection_reason"] == "Blurry photo"

        notification = await db_client.get_first_record(collection="notifications", filter_query='type = "task_rejected"')
        assert notification["body"] == "Blurry photo"

    async def test_reject_after_approve_conflicts(self, world):
        await verification_service.approve(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        with pytest.raises(AlreadyResolvedError):
            await verification_service.reject(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])


@pytest.mark.unit
class TestAiVerify:
    async def test_high_confidence_auto_approves(self, world, monkeypatch):
        await configure_ai(target_kind="squad", target_id=world["squad"]["id"], api_key="sk-squad")
        calls = use_verifier(monkeypatch, FakeVerifier(Judgement(confidence=0.92, reason="Shows a run")))

        result = await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        assert result.auto_approved is True
        assert result.confidence == 0.92
        assert result.threshold is None
        assert calls == [{"provider": "openai", "api_key": "sk-squad", "model": None}]
        assert await total_xp(world["submitter"]) == 55

        completion = await db_client.get_record(collection="task_completions", record_id=world["completion"].id)
        assert completion["ai_confidence"] == 0.92
        assert completion["verification_status"] == "verified"

    async def test_low_confidence_leaves_pending(self, world, monkeypatch):
        await configure_ai(target_kind="squad", target_id=world["squad"]["id"], threshold=0.8)
        use_verifier(monkeypatch, FakeVerifier(Judgement(confidence=0.4, reason="Unclear")))

        result = await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        assert result.auto_approved is False
        assert result.threshold == 0.8
        entry = await db_client.get_record(collection="verification_queue", record_id=world["entry"]["id"])
        assert entry["status"] == "pending"
        assert await total_xp(world["submitter"]) == 0

    async def test_judge_failure_degrades_to_zero(self, world, monkeypatch):
        await configure_ai(target_kind="squad", target_id=world["squad"]["id"])
        use_verifier(monkeypatch, FakeVerifier(error=RuntimeError("provider down")))

        result = await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        assert result.confidence == 0
        assert result.reason == "AI verification failed"
        assert result.auto_approved is False
        entry = await db_client.get_record(collection="verification_queue", record_id=world["entry"]["id"])
        assert entry["status"] == "pending"

    async def test_judge_timeout_degrades_to_zero(self, world, monkeypatch, test_settings):
        monkeypatch.setattr(test_settings, "ai_verification_timeout_seconds", 0.01)
        await configure_ai(target_kind="squad", target_id=world["squad"]["id"])
        use_verifier(monkeypatch, FakeVerifier(Judgement(confidence=1.0, reason="late"), delay=1))

        result = await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        assert result.confidence == 0
        assert result.auto_approved is False

    async def test_undecryptable_key_degrades_to_zero(self, world, monkeypatch):
        await db_client.create_record(
            collection="ai_settings",
            data={"target_kind": "squad", "target_id": world["squad"]["id"], "provider": "openai", "api_key_encrypted": "zz"},
        )
        calls = use_verifier(monkeypatch, FakeVerifier(Judgement(confidence=1.0, reason="ok")))

        result = await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        assert result.confidence == 0
        assert calls == []

    async def test_without_settings_is_misconfigured(self, world):
        with pytest.raises(MisconfiguredVerifierError):
            await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

    async def test_unknown_provider_is_misconfigured(self, world):
        await configure_ai(target_kind="squad", target_id=world["squad"]["id"], provider="acme")

        with pytest.raises(MisconfiguredVerifierError, match="Unsupported AI provider"):
            await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

    async def test_missing_proof(self, world):
        await configure_ai(target_kind="squad", target_id=world["squad"]["id"])
        await db_client.update_record(
            collection="task_completions", record_id=world["completion"].id, data={"proof_url": None}
        )

        with pytest.raises(MissingProofError):
            await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

    async def test_outsider_denied(self, world):
        with pytest.raises(PermissionDeniedError):
            await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["outsider"]["id"])

    async def test_resolved_entry_conflicts(self, world):
        await verification_service.reject(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])

        with pytest.raises(AlreadyResolvedError):
            await verification_service.ai_verify(entry_id=world["entry"]["id"], actor_id=world["moderator"]["id"])
