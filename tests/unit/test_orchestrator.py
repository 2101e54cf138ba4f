"""
tests/unit/test_orchestrator.py — Confirmation Orchestrator Tests

Tests the submit → (confirm | cancel) workflow with a mocked AgentGateway.

Test groups:
  - Validation happens before any agent call
  - Reply-driven gating: awaiting state, resume text, confirm / cancel
  - Pre-check gating: zero calls until confirm, then exactly one
  - Submitting while awaiting: typed yes/no, superseding prompts
  - Failed confirm leaves the view IDLE
  - Exchanges recorded to the view, the shared log and the on_exchange hook
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.orchestrator import ConfirmationOrchestrator
from agent.response_synthesizer import ResponseKind
from agent.session import ConversationView, ViewState
from brain.types import GatewayResult
from exceptions import PromptValidationError, StorageWriteError
from gateway.session_store import SessionRegistry
from memory.exchange_log import ExchangeLog
from safety.confirmation_policy import PromptPrecheckPolicy, ReplyDrivenPolicy


# ─────────────────────────────────────────────────────────────────────────────
# Shared test helpers
# ─────────────────────────────────────────────────────────────────────────────

def _result(text: str, fallback: bool = False) -> GatewayResult:
    return GatewayResult(result=text, raw={"completion": text},
                         session_id="session-1", used_fallback=fallback)


def _mock_gateway(*replies: str) -> MagicMock:
    gateway = MagicMock()
    gateway.invoke = AsyncMock(side_effect=[_result(r) for r in replies])
    gateway.registry = SessionRegistry()
    return gateway


def _orc(gateway, policy=None, **kwargs) -> ConfirmationOrchestrator:
    return ConfirmationOrchestrator(gateway, policy or ReplyDrivenPolicy(), **kwargs)


def _view() -> ConversationView:
    return ConversationView.create(user_id="u1")


def _prompts_sent(gateway) -> list[str]:
    return [c.args[0] for c in gateway.invoke.await_args_list]


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", [None, "", "   ", 42, "x" * 1001])
    async def test_rejected_before_any_call(self, bad):
        gateway = _mock_gateway()
        view = _view()
        with pytest.raises(PromptValidationError):
            await _orc(gateway).submit(view, bad)
        gateway.invoke.assert_not_awaited()
        assert view.turn_count == 0

    @pytest.mark.asyncio
    async def test_exactly_max_length_accepted(self):
        gateway = _mock_gateway("ok")
        resp = await _orc(gateway).submit(_view(), "x" * 1000)
        assert resp.text == "ok"

    @pytest.mark.asyncio
    async def test_prompt_is_trimmed(self):
        gateway = _mock_gateway("ok")
        await _orc(gateway).submit(_view(), "  plan my week  ")
        assert _prompts_sent(gateway) == ["plan my week"]


# ─────────────────────────────────────────────────────────────────────────────
# Reply-driven flow
# ─────────────────────────────────────────────────────────────────────────────

class TestReplyDriven:
    @pytest.mark.asyncio
    async def test_plain_reply_is_text(self):
        gateway = _mock_gateway("Here is your plan.")
        view = _view()
        resp = await _orc(gateway).submit(view, "plan my week")
        assert resp.kind == ResponseKind.TEXT
        assert resp.trusted
        assert view.state == ViewState.IDLE

    @pytest.mark.asyncio
    async def test_consent_question_awaits(self):
        gateway = _mock_gateway("Would you like me to delete the file?")
        view = _view()
        resp = await _orc(gateway).submit(view, "tidy my folder")
        assert resp.awaiting_confirmation
        assert resp.text == "Would you like me to delete the file?"
        assert resp.trusted
        assert view.state == ViewState.AWAITING_CONFIRMATION
        assert view.pending.action == "delete the file"

    @pytest.mark.asyncio
    async def test_confirm_sends_resume_text(self):
        gateway = _mock_gateway("Would you like me to delete the file?", "Deleted.")
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "tidy my folder")
        resp = await orc.confirm(view)
        assert resp.text == "Deleted."
        assert _prompts_sent(gateway)[-1] == "Yes, please delete the file"
        assert view.state == ViewState.IDLE
        assert view.confirmed_count == 1

    @pytest.mark.asyncio
    async def test_cancel_makes_no_call(self):
        gateway = _mock_gateway("Would you like me to delete the file?")
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "tidy my folder")
        resp = orc.cancel(view)
        assert resp.kind == ResponseKind.CANCELLED
        assert gateway.invoke.await_count == 1
        assert view.state == ViewState.IDLE
        assert view.cancelled_count == 1

    @pytest.mark.asyncio
    async def test_confirm_with_nothing_pending(self):
        gateway = _mock_gateway()
        resp = await _orc(gateway).confirm(_view())
        assert resp.kind == ResponseKind.NOTICE
        gateway.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_with_nothing_pending(self):
        resp = _orc(_mock_gateway()).cancel(_view())
        assert resp.kind == ResponseKind.NOTICE


# ─────────────────────────────────────────────────────────────────────────────
# Pre-check flow
# ─────────────────────────────────────────────────────────────────────────────

class TestPrecheck:
    @pytest.mark.asyncio
    async def test_gated_prompt_calls_agent_only_after_confirm(self):
        gateway = _mock_gateway("Staging environment deleted.")
        view = _view()
        orc = _orc(gateway, PromptPrecheckPolicy(["delete"]))

        resp = await orc.submit(view, "delete the staging environment")
        assert resp.awaiting_confirmation
        assert not resp.trusted
        assert view.state == ViewState.AWAITING_CONFIRMATION
        assert gateway.invoke.await_count == 0

        resp = await orc.confirm(view)
        assert gateway.invoke.await_count == 1
        assert _prompts_sent(gateway) == ["delete the staging environment"]
        assert resp.text == "Staging environment deleted."
        assert view.state == ViewState.IDLE

    @pytest.mark.asyncio
    async def test_ungated_prompt_goes_straight_through(self):
        gateway = _mock_gateway("Would you like me to delete the file?")
        view = _view()
        resp = await _orc(gateway, PromptPrecheckPolicy(["delete"])).submit(view, "tidy up")
        assert resp.kind == ResponseKind.TEXT
        assert view.state == ViewState.IDLE


# ─────────────────────────────────────────────────────────────────────────────
# Submitting while awaiting
# ─────────────────────────────────────────────────────────────────────────────

class TestSubmitWhileAwaiting:
    @pytest.mark.asyncio
    async def test_typed_yes_confirms(self):
        gateway = _mock_gateway("Shall I book the room?", "Booked.")
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "set up the meeting")
        resp = await orc.submit(view, "yes")
        assert resp.text == "Booked."
        assert _prompts_sent(gateway)[-1] == "Yes, please book the room"
        assert view.state == ViewState.IDLE

    @pytest.mark.asyncio
    async def test_typed_no_cancels(self):
        gateway = _mock_gateway("Shall I book the room?")
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "set up the meeting")
        resp = await orc.submit(view, "no thanks")
        assert resp.kind == ResponseKind.CANCELLED
        assert gateway.invoke.await_count == 1

    @pytest.mark.asyncio
    async def test_new_prompt_supersedes_pending(self):
        gateway = _mock_gateway("Shall I book the room?", "Here is the agenda.")
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "set up the meeting")
        resp = await orc.submit(view, "write the agenda instead")
        assert resp.text == "Here is the agenda."
        assert _prompts_sent(gateway)[-1] == "write the agenda instead"
        assert view.state == ViewState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["I'm not sure", "what should I confirm", "I am not ok"])
    async def test_ambiguous_reply_never_runs_gated_prompt(self, reply):
        gateway = _mock_gateway("Here is what I know.")
        view = _view()
        orc = _orc(gateway, PromptPrecheckPolicy(["delete"]))
        await orc.submit(view, "delete the staging environment")
        resp = await orc.submit(view, reply)
        assert "delete the staging environment" not in _prompts_sent(gateway)
        assert _prompts_sent(gateway) == [reply]
        assert resp.text == "Here is what I know."
        assert view.state == ViewState.IDLE
        assert view.confirmed_count == 0

    @pytest.mark.asyncio
    async def test_punctuated_yes_confirms(self):
        gateway = _mock_gateway("Deleted.")
        view = _view()
        orc = _orc(gateway, PromptPrecheckPolicy(["delete"]))
        await orc.submit(view, "delete the staging environment")
        resp = await orc.submit(view, "Yes, please!")
        assert _prompts_sent(gateway) == ["delete the staging environment"]
        assert resp.text == "Deleted."


# ─────────────────────────────────────────────────────────────────────────────
# Failures and recording
# ─────────────────────────────────────────────────────────────────────────────

class TestFailuresAndRecording:
    @pytest.mark.asyncio
    async def test_failed_confirm_leaves_view_idle(self):
        gateway = MagicMock()
        gateway.invoke = AsyncMock(side_effect=[
            _result("Would you like me to delete the file?"),
            RuntimeError("gateway exploded"),
        ])
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "tidy up")
        resp = await orc.confirm(view)
        assert resp.kind == ResponseKind.ERROR
        assert view.state == ViewState.IDLE
        assert view.pending is None

    @pytest.mark.asyncio
    async def test_fallback_reply_is_untrusted(self):
        gateway = MagicMock()
        gateway.invoke = AsyncMock(return_value=_result("I received your request", fallback=True))
        resp = await _orc(gateway).submit(_view(), "<b>hello</b> world again")
        assert not resp.trusted
        assert resp.used_fallback

    @pytest.mark.asyncio
    async def test_exchanges_recorded_everywhere(self):
        gateway = _mock_gateway("first reply", "second reply")
        log = ExchangeLog(max_size=50)
        hook = MagicMock()
        view = _view()
        orc = _orc(gateway, exchange_log=log, on_exchange=hook)
        await orc.submit(view, "first")
        await orc.submit(view, "second")

        assert [e.prompt for e in view.history] == ["second", "first"]
        assert [e.result for e in await log.snapshot()] == ["second reply", "first reply"]
        assert hook.call_count == 2
        assert view.history[0].user_id == "u1"

    @pytest.mark.asyncio
    async def test_history_passed_to_gateway(self):
        gateway = _mock_gateway("first reply", "second reply")
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "first")
        await orc.submit(view, "second")
        history_arg = gateway.invoke.await_args_list[1].args[1]
        assert [e.prompt for e in history_arg] == ["first"]

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_break_turn(self):
        gateway = _mock_gateway("reply")
        hook = MagicMock(side_effect=StorageWriteError("disk full"))
        resp = await _orc(gateway, on_exchange=hook).submit(_view(), "hello agent")
        assert resp.text == "reply"

    @pytest.mark.asyncio
    async def test_status(self):
        gateway = _mock_gateway("Shall I book the room?")
        view = _view()
        orc = _orc(gateway)
        await orc.submit(view, "set up the meeting")
        await gateway.registry.resolve("u1")
        resp = await orc.status(view)
        assert resp.kind == ResponseKind.STATUS
        assert resp.metadata["state"] == "awaiting_confirmation"
        assert resp.metadata["pending_action"] == "book the room"
        assert resp.session_id is not None

    @pytest.mark.asyncio
    async def test_status_without_user_reports_anonymous_session(self):
        gateway = _mock_gateway()
        view = ConversationView.create()
        handle = await gateway.registry.resolve("anonymous")
        resp = await _orc(gateway).status(view)
        assert resp.session_id == handle
