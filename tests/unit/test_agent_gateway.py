"""
tests/unit/test_agent_gateway.py — Agent Gateway Tests

Covers:
  - Session handle resolved per user and reused across calls
  - Outbound prompt rewriting (continuation, follow-up, no double rewrite)
  - Fallback replies: not configured, connection error, timeout, bad shape,
    empty reply, unexpected exception — invoke() never raises
  - Fallback text selection (plan / help / echo)
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from agent.context_enhancer import ContextEnhancer, continuation_clause
from brain.agent_client import BaseAgentClient
from brain.agent_gateway import (
    FALLBACK_HELP,
    FALLBACK_PLAN,
    AgentGateway,
    fallback_reply,
)
from brain.types import CompletionReply, FlatTextReply, ReplyKind
from exceptions import (
    AgentConnectionError,
    AgentNotConfiguredError,
    UnrecognizedReplyShapeError,
)
from gateway.session_store import SessionRegistry
from memory.exchange_log import Exchange


def _gateway(client, timeout: float = 5.0) -> AgentGateway:
    return AgentGateway(client, SessionRegistry(), ContextEnhancer(), request_timeout=timeout)


def _mock_client(reply=None, side_effect=None) -> AsyncMock:
    client = AsyncMock(spec=BaseAgentClient)
    if side_effect is not None:
        client.invoke.side_effect = side_effect
    else:
        client.invoke.return_value = reply or CompletionReply(completion="Sure thing.")
    return client


def _sent_text(client: AsyncMock, call: int = -1) -> str:
    return client.invoke.await_args_list[call].args[0].input_text


def _sent_handle(client: AsyncMock, call: int = -1) -> str:
    return client.invoke.await_args_list[call].args[0].session_handle


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

class TestInvoke:
    @pytest.mark.asyncio
    async def test_returns_normalised_result(self):
        client = _mock_client(FlatTextReply(flat_text="Here you go.", raw={"text": "Here you go."}))
        outcome = await _gateway(client).invoke("Plan my week", user_id="u1")
        assert outcome.result == "Here you go."
        assert outcome.raw == {"text": "Here you go."}
        assert outcome.reply_kind == ReplyKind.FLAT_TEXT
        assert not outcome.used_fallback

    @pytest.mark.asyncio
    async def test_same_user_same_handle(self):
        client = _mock_client()
        gw = _gateway(client)
        a = await gw.invoke("first", user_id="u1")
        b = await gw.invoke("second", user_id="u1")
        c = await gw.invoke("third", user_id="u2")
        assert a.session_id == b.session_id == _sent_handle(client, 0)
        assert c.session_id != a.session_id

    @pytest.mark.asyncio
    async def test_confirmation_gets_continuation_clause(self):
        client = _mock_client()
        history = [Exchange(prompt="tidy up", result="Would you like me to delete the temp files?")]
        await _gateway(client).invoke("yes", history, user_id="u1")
        assert _sent_text(client) == f"yes {continuation_clause('delete')}"

    @pytest.mark.asyncio
    async def test_follow_up_gets_context(self):
        client = _mock_client()
        history = [Exchange(prompt="p", result="The venue holds 40 people.")]
        await _gateway(client).invoke("what about catering?", history, user_id="u1")
        assert "The venue holds 40 people." in _sent_text(client)

    @pytest.mark.asyncio
    async def test_already_enhanced_prompt_not_rewritten_twice(self):
        client = _mock_client()
        history = [Exchange(prompt="p", result="Shall I create the report?")]
        prompt = f"yes {continuation_clause('create')}"
        await _gateway(client).invoke(prompt, history, user_id="u1")
        assert _sent_text(client) == prompt

    @pytest.mark.asyncio
    async def test_no_history_sends_prompt_verbatim(self):
        client = _mock_client()
        await _gateway(client).invoke("delete the staging environment", user_id="u1")
        assert _sent_text(client) == "delete the staging environment"


# ─────────────────────────────────────────────────────────────────────────────
# Fallbacks
# ─────────────────────────────────────────────────────────────────────────────

class TestFallback:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        AgentNotConfiguredError("missing base_url"),
        AgentConnectionError("refused"),
        UnrecognizedReplyShapeError(keys=["answer"]),
        RuntimeError("boom"),
    ])
    async def test_errors_become_fallback(self, error):
        client = _mock_client(side_effect=error)
        outcome = await _gateway(client).invoke("Please plan my sprint", user_id="u1")
        assert outcome.used_fallback
        assert outcome.result == FALLBACK_PLAN
        assert outcome.raw["error"] == type(error).__name__
        assert outcome.session_id is not None

    @pytest.mark.asyncio
    async def test_timeout_becomes_fallback(self):
        async def slow(_request):
            await asyncio.sleep(5)

        client = _mock_client(side_effect=slow)
        outcome = await _gateway(client, timeout=0.05).invoke("hello there", user_id="u1")
        assert outcome.used_fallback
        assert outcome.raw["error"] == "TimeoutError"
        assert "hello there" in outcome.result

    @pytest.mark.asyncio
    async def test_empty_reply_becomes_fallback(self):
        client = _mock_client(CompletionReply(completion="   "))
        outcome = await _gateway(client).invoke("can you help?", user_id="u1")
        assert outcome.used_fallback
        assert outcome.result == FALLBACK_HELP

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        client = _mock_client(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await _gateway(client).invoke("anything", user_id="u1")


class TestFallbackReply:
    def test_plan_keyword(self):
        assert fallback_reply("Make a PLAN for Q3") == FALLBACK_PLAN

    def test_help_keyword(self):
        assert fallback_reply("help me out") == FALLBACK_HELP

    def test_plan_beats_help(self):
        assert fallback_reply("help me plan") == FALLBACK_PLAN

    def test_echo(self):
        reply = fallback_reply("book a table")
        assert "book a table" in reply
        assert reply.strip()
