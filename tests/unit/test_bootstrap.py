"""
tests/unit/test_bootstrap.py — Stack Factory Tests
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from brain.agent_client import BaseAgentClient, HttpAgentClient
from brain.types import CompletionReply
from config.settings import Settings
from kernel.bootstrap import build_stack
from safety.confirmation_policy import PromptPrecheckPolicy, ReplyDrivenPolicy


class TestBuildStack:
    def test_defaults(self):
        stack = build_stack(Settings())
        assert isinstance(stack.policy, ReplyDrivenPolicy)
        assert isinstance(stack.client, HttpAgentClient)
        assert stack.exchange_log.max_size == 50
        assert stack.gateway.registry is stack.registry
        assert stack.orchestrator.policy is stack.policy

    def test_policy_from_settings(self):
        settings = Settings(confirmation={"policy": "precheck", "precheck_keywords": ["purge"]})
        stack = build_stack(settings)
        assert isinstance(stack.policy, PromptPrecheckPolicy)
        assert stack.policy.keywords == ["purge"]

    @pytest.mark.asyncio
    async def test_unconfigured_service_still_answers(self):
        stack = build_stack(Settings())
        outcome = await stack.gateway.invoke("help me", user_id="u1")
        assert outcome.used_fallback
        assert outcome.result

    @pytest.mark.asyncio
    async def test_injected_client_and_hook(self):
        client = AsyncMock(spec=BaseAgentClient)
        client.invoke.return_value = CompletionReply(completion="done")
        seen = []
        stack = build_stack(Settings(), client=client, on_exchange=seen.append)

        from agent.session import ConversationView
        await stack.orchestrator.submit(ConversationView.create("u1"), "hello agent")
        assert [e.result for e in seen] == ["done"]
        assert len(stack.exchange_log) == 1
