"""
kernel/bootstrap.py — Parley Stack Factory

Shared factory that wires the conversation stack from settings. Used by
the CLI, the WebSocket gateway and the HTTP API so the
AgentClient → SessionRegistry → AgentGateway → Orchestrator chain is built
in one place, and the process-wide stores (session registry, exchange log)
are created exactly once.

Usage:
    from kernel.bootstrap import build_stack
    stack = build_stack(settings)
    resp = await stack.orchestrator.submit(view, "hello")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from agent.context_enhancer import ContextEnhancer
from agent.orchestrator import ConfirmationOrchestrator
from brain.agent_client import BaseAgentClient, HttpAgentClient
from brain.agent_gateway import AgentGateway
from gateway.session_store import SessionRegistry
from memory.exchange_log import Exchange, ExchangeLog
from observability.logger import get_logger
from safety.confirmation_policy import ConfirmationPolicy, create_policy

log = get_logger(__name__)


@dataclass
class ParleyStack:
    """All wired components returned by build_stack()."""
    orchestrator: ConfirmationOrchestrator
    gateway: AgentGateway
    registry: SessionRegistry
    exchange_log: ExchangeLog
    policy: ConfirmationPolicy
    client: BaseAgentClient


def build_stack(
    settings,
    client: Optional[BaseAgentClient] = None,
    on_exchange: Optional[Callable[[Exchange], None]] = None,
) -> ParleyStack:
    """
    Wire up the conversation stack from settings.

    Args:
        settings:    Loaded Parley Settings object.
        client:      Agent service transport; defaults to HttpAgentClient.
        on_exchange: Optional hook called with every recorded Exchange
                     (the CLI uses it to update the on-disk history cache).
    """
    if client is None:
        client = HttpAgentClient.from_settings(settings)
    if not settings.agent_service_ready:
        log.warning(
            "bootstrap.agent_service_unconfigured",
            missing=settings.missing_agent_service_fields(),
            effect="all replies will use the fallback text",
        )

    registry = SessionRegistry()
    exchange_log = ExchangeLog(max_size=settings.memory.exchange_log_size)
    enhancer = ContextEnhancer.from_settings(settings)
    gateway = AgentGateway(
        client=client,
        registry=registry,
        enhancer=enhancer,
        request_timeout=settings.agent_service.request_timeout_seconds,
    )
    policy = create_policy(
        settings.confirmation.policy,
        keywords=settings.confirmation.precheck_keywords,
    )
    orchestrator = ConfirmationOrchestrator(
        gateway=gateway,
        policy=policy,
        exchange_log=exchange_log,
        on_exchange=on_exchange,
        max_prompt_length=settings.conversation.max_prompt_length,
    )
    log.info("bootstrap.stack_ready", policy=policy.name, client=repr(client))
    return ParleyStack(
        orchestrator=orchestrator,
        gateway=gateway,
        registry=registry,
        exchange_log=exchange_log,
        policy=policy,
        client=client,
    )
