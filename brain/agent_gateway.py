"""
brain/agent_gateway.py — Agent Gateway

The single entry point the rest of Parley uses to talk to the agent
service. For each prompt it:
    1. Resolves the user's session handle      (SessionRegistry)
    2. Builds the outbound prompt              (ContextEnhancer)
    3. Calls the agent service                 (BaseAgentClient)
    4. Normalises the reply to one string      (brain.types)

invoke() never raises. Missing configuration, network failure, timeout
and unrecognised reply shapes all resolve to a deterministic fallback
reply, so every caller always has something to display. There are no
retries: a failed call is answered once with the fallback.

Usage:
    gateway = AgentGateway(client, registry, enhancer)
    outcome = await gateway.invoke("Plan my week", history, user_id="u1")
    print(outcome.result)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any, Optional

from agent.context_enhancer import ContextEnhancer, continuation_clause
from brain.agent_client import BaseAgentClient
from brain.types import AgentRequest, GatewayResult, normalize_reply
from exceptions import AgentUnavailableError
from gateway.session_store import SessionRegistry, resolve_user_id
from observability.logger import bind_session, clear_session, get_logger

log = get_logger(__name__)

_DEFAULT_REQUEST_TIMEOUT = 45.0


# ─────────────────────────────────────────────────────────────────────────────
# Fallback replies
# ─────────────────────────────────────────────────────────────────────────────

FALLBACK_PLAN = (
    "Here is a general plan you can adapt:\n"
    "1. Define the goal and what done looks like.\n"
    "2. Break the goal into small, concrete tasks.\n"
    "3. Order the tasks and note any dependencies.\n"
    "4. Estimate the time each task needs and set milestones.\n"
    "5. Start with the first task and review progress regularly."
)

FALLBACK_HELP = (
    "I can help you plan tasks, break goals into steps, and carry out "
    "follow-up actions once you confirm them. Describe what you want to "
    "achieve and I'll suggest a way forward."
)

FALLBACK_ECHO = (
    "I received your request: \"{prompt}\". I'm sorry, but I can't reach "
    "the planning service right now. Please try again in a moment."
)


def fallback_reply(prompt: str) -> str:
    """Canned reply chosen by keyword. Deterministic and never empty."""
    lowered = prompt.lower()
    if "plan" in lowered:
        return FALLBACK_PLAN
    if "help" in lowered:
        return FALLBACK_HELP
    return FALLBACK_ECHO.format(prompt=prompt)


# ─────────────────────────────────────────────────────────────────────────────
# Gateway
# ─────────────────────────────────────────────────────────────────────────────


class AgentGateway:
    """
    Resolves sessions, rewrites prompts, calls the agent, normalises replies.
    """

    def __init__(
        self,
        client: BaseAgentClient,
        registry: SessionRegistry,
        enhancer: Optional[ContextEnhancer] = None,
        request_timeout: float = _DEFAULT_REQUEST_TIMEOUT,
    ):
        self._client = client
        self._registry = registry
        self._enhancer = enhancer or ContextEnhancer()
        self._request_timeout = request_timeout

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def build_outbound_prompt(self, prompt: str, history: Sequence[Any]) -> str:
        """
        A confirmation that continues a discussed action gets the literal
        continuation clause; everything else goes through the enhancer.
        Prompts that already carry a rewrite are sent as they are.
        """
        if self._enhancer.is_enhanced(prompt):
            return prompt
        verb = self._enhancer.continuation_verb(prompt, history)
        if verb:
            return f"{prompt} {continuation_clause(verb)}"
        return self._enhancer.enhance(prompt, history)

    async def invoke(
        self,
        prompt: str,
        history: Sequence[Any] = (),
        user_id: Optional[str] = None,
    ) -> GatewayResult:
        t0 = time.monotonic()
        uid = resolve_user_id(user_id)
        handle: Optional[str] = None
        outbound = prompt

        try:
            handle = await self._registry.resolve(uid)
            bind_session(handle, uid)
            outbound = self.build_outbound_prompt(prompt, history)

            log.info("gateway.invoke.start", session_id=handle,
                     prompt_len=len(prompt), enhanced=outbound != prompt)

            reply = await asyncio.wait_for(
                self._client.invoke(AgentRequest(session_handle=handle, input_text=outbound)),
                timeout=self._request_timeout,
            )
            result = normalize_reply(reply)
            if not result.strip():
                raise AgentUnavailableError("Agent service returned an empty reply")

            log.info("gateway.invoke.done", session_id=handle, kind=reply.kind.value,
                     ms=round((time.monotonic() - t0) * 1000))
            return GatewayResult(
                result=result,
                raw=reply.raw,
                session_id=handle,
                outbound_prompt=outbound,
                reply_kind=reply.kind,
            )

        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            return self._fallback(prompt, outbound, handle, "TimeoutError",
                                  f"No reply within {self._request_timeout}s")
        except AgentUnavailableError as e:
            return self._fallback(prompt, outbound, handle, type(e).__name__, str(e))
        except Exception as e:
            log.error("gateway.invoke.unexpected", error=str(e), exc_info=True)
            return self._fallback(prompt, outbound, handle, type(e).__name__, str(e))
        finally:
            clear_session()

    def _fallback(
        self,
        prompt: str,
        outbound: str,
        handle: Optional[str],
        error_type: str,
        message: str,
    ) -> GatewayResult:
        log.warning("gateway.invoke.fallback", session_id=handle,
                    error_type=error_type, error=message)
        return GatewayResult(
            result=fallback_reply(prompt),
            raw={"error": error_type, "message": message},
            session_id=handle,
            outbound_prompt=outbound,
            used_fallback=True,
        )
