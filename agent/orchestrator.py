"""
agent/orchestrator.py — Confirmation Orchestrator

Drives the two-phase submit → (confirm | cancel) workflow for one
ConversationView at a time.

For each submitted prompt the orchestrator:
    1. Validates it and records the user turn
    2. Asks the policy whether the prompt must wait   (before_send)
    3. Calls the AgentGateway                         (never raises)
    4. Records the Exchange                           (view, shared log, cache)
    5. Asks the policy whether the reply must wait    (after_reply)

Submitting while a confirmation is pending:
    - a reply that is only an affirmation ("yes", "go ahead") is confirm()
    - a reply that is only a refusal ("no", "never mind") is cancel()
    - anything else, ambiguous text like "I'm not sure" included, discards
      the pending action and starts a fresh cycle

Confirm always clears the pending action before calling the agent, so a
failure during the follow-through can never leave the view stuck waiting.

Usage:
    orc = ConfirmationOrchestrator(gateway, ReplyDrivenPolicy(), exchange_log)
    view = ConversationView.create(user_id="u1")
    resp = await orc.submit(view, "Clean up the staging bucket")
    if resp.awaiting_confirmation:
        resp = await orc.confirm(view)
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from agent.classifier import is_explicit_cancellation, is_explicit_confirmation
from agent.response_synthesizer import AgentResponse, ResponseSynthesizer
from agent.session import ConversationView
from brain.agent_gateway import AgentGateway
from exceptions import NoPendingActionError, StorageWriteError
from gateway.session_store import resolve_user_id
from gateway.validation import MAX_PROMPT_LENGTH, validate_prompt
from memory.exchange_log import Exchange, ExchangeLog
from observability.logger import get_logger
from safety.confirmation_policy import ConfirmationPolicy, ReplyDrivenPolicy

log = get_logger(__name__)


class ConfirmationOrchestrator:
    """
    Owns the confirm/cancel protocol. Holds no per-view state itself.

    Inject all dependencies via constructor; kernel.bootstrap.build_stack()
    wires one up from settings.
    """

    def __init__(
        self,
        gateway: AgentGateway,
        policy: Optional[ConfirmationPolicy] = None,
        exchange_log: Optional[ExchangeLog] = None,
        on_exchange: Optional[Callable[[Exchange], None]] = None,
        max_prompt_length: int = MAX_PROMPT_LENGTH,
    ):
        self._gateway = gateway
        self._policy = policy or ReplyDrivenPolicy()
        self._log = exchange_log
        self._on_exchange = on_exchange
        self._max_prompt_length = max_prompt_length
        self._synth = ResponseSynthesizer()

    @property
    def policy(self) -> ConfirmationPolicy:
        return self._policy

    @property
    def synth(self) -> ResponseSynthesizer:
        return self._synth

    # ─────────────────────────────────────────────────────────────────────────
    # Public: submit / confirm / cancel
    # ─────────────────────────────────────────────────────────────────────────

    async def submit(self, view: ConversationView, prompt: str) -> AgentResponse:
        """
        Handle one user prompt. Raises PromptValidationError for bad input;
        every other outcome is returned as an AgentResponse.
        """
        prompt = validate_prompt(prompt, self._max_prompt_length)

        if view.is_awaiting:
            if is_explicit_confirmation(prompt):
                return await self.confirm(view)
            if is_explicit_cancellation(prompt):
                return self.cancel(view)
            view.discard_pending("superseded")

        view.record_user_turn(prompt)
        log.info("orchestrator.submit", view_id=view.id, policy=self._policy.name,
                 prompt=prompt[:120])

        pending = self._policy.before_send(prompt)
        if pending is not None:
            view.set_pending(pending)
            return self._synth.confirmation_request(pending)

        t0 = time.monotonic()
        outcome = await self._gateway.invoke(prompt, view.history, view.user_id)
        await self._record(view, prompt, outcome.result)

        pending = self._policy.after_reply(prompt, outcome.result)
        log.info("orchestrator.turn_done", view_id=view.id,
                 ms=round((time.monotonic() - t0) * 1000),
                 fallback=outcome.used_fallback, gated=pending is not None)
        if pending is not None:
            view.set_pending(pending)
            return self._synth.reply_confirmation(outcome, pending)
        return self._synth.from_gateway(outcome)

    async def confirm(self, view: ConversationView) -> AgentResponse:
        """Run the pending action's follow-through. View is IDLE afterwards."""
        try:
            pending = view.pop_pending()
        except NoPendingActionError:
            return self._synth.nothing_pending()

        log.info("orchestrator.confirmed", view_id=view.id, action_id=pending.id)
        view.confirmed_count += 1
        try:
            outcome = await self._gateway.invoke(
                pending.resume_text, view.history, view.user_id
            )
        except Exception as e:
            log.error("orchestrator.confirm_failed", view_id=view.id,
                      action_id=pending.id, error=str(e), exc_info=True)
            return self._synth.error("The confirmed action could not be completed.",
                                     detail=str(e))

        await self._record(view, pending.resume_text, outcome.result)
        return self._synth.from_gateway(outcome)

    def cancel(self, view: ConversationView) -> AgentResponse:
        pending = view.discard_pending("cancelled")
        if pending is None:
            return self._synth.nothing_pending()
        view.cancelled_count += 1
        return self._synth.cancelled(pending)

    async def status(self, view: ConversationView) -> AgentResponse:
        handle = await self._gateway.registry.get(resolve_user_id(view.user_id))
        return self._synth.status(view, session_id=handle)

    # ─────────────────────────────────────────────────────────────────────────
    # Exchange recording
    # ─────────────────────────────────────────────────────────────────────────

    async def _record(self, view: ConversationView, prompt: str, result: str) -> Exchange:
        exchange = Exchange(prompt=prompt, result=result, user_id=view.user_id)
        view.add_exchange(exchange)
        if self._log is not None:
            await self._log.append(exchange)
        if self._on_exchange is not None:
            try:
                self._on_exchange(exchange)
            except StorageWriteError as e:
                log.error("orchestrator.exchange_persist_failed", error=str(e))
        return exchange
