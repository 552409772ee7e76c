"""Turns one chat request into a cancellable stream of envelopes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import AsyncIterator, Iterable

from .cancellation import CancellationRegistry, CancellationToken
from .capabilities import Capability, room_envelope, utc_now
from .config import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from .errors import AgentroomError, ErrorKind
from .models import (
    AgentDescriptor,
    ChatRoomMessage,
    ChatTurnRequest,
    ContextMessage,
    FragmentType,
    ResponseFragment,
    StreamEnvelope,
)
from .providers import ProviderOptions, ProviderRequest
from .registry import ProviderRegistry, ResolvedAgent
from .router import CommandRouter, RouteDecision, RoutePath

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    CREATED = "created"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


_FINAL_STATES = {
    "done": RequestState.COMPLETED,
    "error": RequestState.FAILED,
    "aborted": RequestState.ABORTED,
}


def chat_room_message(fragment: ResponseFragment, agent_id: str) -> ChatRoomMessage | None:
    """Provider-neutral room message for a fragment, if the fragment has one."""
    timestamp = utc_now()
    if fragment.type == FragmentType.TEXT:
        return ChatRoomMessage(
            type="text", content=fragment.content or "", agent_id=agent_id, timestamp=timestamp
        )
    if fragment.type == FragmentType.IMAGE:
        return ChatRoomMessage(
            type="image",
            content=fragment.content or "Image captured",
            image_data=fragment.image_data,
            agent_id=agent_id,
            timestamp=timestamp,
        )
    if fragment.type == FragmentType.TOOL_USE and fragment.tool_name == "capture_screen":
        return ChatRoomMessage(
            type="command",
            content=f"Executing screen capture: {fragment.tool_name}",
            agent_id=agent_id,
            timestamp=timestamp,
            metadata={"command": fragment.tool_name},
        )
    if fragment.type == FragmentType.ERROR and not fragment.is_aborted:
        return ChatRoomMessage(
            type="text", content=f"Error: {fragment.error}", agent_id=agent_id, timestamp=timestamp
        )
    return None


def describe_agents(agents: Iterable[AgentDescriptor]) -> str:
    lines = ["Agents available in this room:"]
    for agent in agents:
        line = f"- @{agent.id} ({agent.name})"
        if agent.description:
            line += f": {agent.description}"
        lines.append(line)
    return "\n".join(lines)


class RequestLifecycleManager:
    """Owns every in-flight chat request from registration to its terminal envelope.

    Each stream yields a connection acknowledgement, the translated
    fragments, and exactly one terminal envelope (``done``, ``error`` or
    ``aborted``) as its last item. The request's cancellation token is
    released when the stream ends, however it ends.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cancellations: CancellationRegistry,
        capabilities: Iterable[Capability] = (),
        debug: bool = False,
        serialize_sessions: bool = False,
    ):
        self.registry = registry
        self.cancellations = cancellations
        self.capabilities = {c.verb: c for c in capabilities}
        self.router = CommandRouter(self.capabilities)
        self.debug = debug
        self.serialize_sessions = serialize_sessions
        self._states: dict[str, RequestState] = {}
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._session_holders: dict[str, int] = {}

    def active_requests(self) -> dict[str, RequestState]:
        return dict(self._states)

    def abort(self, request_id: str) -> bool:
        """Signal an in-flight request. Idempotent; False when nothing was in flight."""
        return self.cancellations.abort(request_id)

    def _set_state(self, request_id: str, state: RequestState):
        self._states[request_id] = state
        logger.debug("Request %s -> %s", request_id, state.value)

    async def stream(self, request: ChatTurnRequest) -> AsyncIterator[StreamEnvelope]:
        request_id = request.request_id
        try:
            token = self.cancellations.register(request_id)
        except AgentroomError as e:
            yield StreamEnvelope.failure(e.message, e.kind)
            return

        self._set_state(request_id, RequestState.CREATED)
        if self.debug:
            logger.debug(
                "Processing %s: %r (agents=%s)",
                request_id,
                request.message[:100],
                [a.id for a in request.available_agents or []],
            )

        terminal: StreamEnvelope | None = None
        try:
            yield StreamEnvelope.json_payload(
                {
                    "type": "system",
                    "subtype": "connection_ack",
                    "request_id": request_id,
                    "timestamp": int(time.time() * 1000),
                }
            )
            async with self._session_turn(request.session_id, token):
                self._set_state(request_id, RequestState.STREAMING)
                async with contextlib.aclosing(self._dispatch(request, token)) as envelopes:
                    async for envelope in envelopes:
                        if envelope.is_terminal:
                            terminal = envelope
                            break
                        yield envelope
                        if token.cancelled:
                            terminal = StreamEnvelope.aborted()
                            break
            if terminal is None:
                terminal = StreamEnvelope.aborted() if token.cancelled else StreamEnvelope.done()
        except AgentroomError as e:
            terminal = StreamEnvelope.failure(e.message, e.kind)
        except Exception as e:
            logger.exception("Request %s failed", request_id)
            terminal = StreamEnvelope.failure(str(e) or type(e).__name__)
        finally:
            self.cancellations.release(request_id, token)
            self._states.pop(request_id, None)
            final = _FINAL_STATES[terminal.kind.value] if terminal else RequestState.ABORTED
            logger.info("Request %s %s", request_id, final.value)

        yield terminal

    @contextlib.asynccontextmanager
    async def _session_turn(self, session_id: str | None, token: CancellationToken):
        """Hold the session's lock for the turn when sessions are serialised."""
        if not self.serialize_sessions or not session_id:
            yield
            return
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        self._session_holders[session_id] = self._session_holders.get(session_id, 0) + 1
        try:
            await token.guard(lock.acquire())
            try:
                yield
            finally:
                lock.release()
        finally:
            # Drop the lock once no turn holds or waits on it
            self._session_holders[session_id] -= 1
            if not self._session_holders[session_id]:
                del self._session_holders[session_id]
                del self._session_locks[session_id]

    def session_lock_count(self) -> int:
        return len(self._session_locks)

    async def _dispatch(
        self, request: ChatTurnRequest, token: CancellationToken
    ) -> AsyncIterator[StreamEnvelope]:
        decision = self.router.route(request.message)

        if decision.path == RoutePath.CAPABILITY:
            capability = self.capabilities[decision.command.command]
            async with contextlib.aclosing(capability.run(decision.command, request, token)) as envelopes:
                async for envelope in envelopes:
                    yield envelope
            return

        if decision.path == RoutePath.SINGLE:
            agent_id = decision.agent_id
        else:
            orchestrator = self.registry.orchestrator()
            if orchestrator is None:
                yield StreamEnvelope.failure(
                    "Orchestrator agent not available for multi-agent coordination",
                    ErrorKind.NOT_FOUND,
                )
                return
            agent_id = orchestrator.id

        resolved = self.registry.resolve_adapter_for(agent_id)
        if resolved is None:
            yield StreamEnvelope.failure(
                f"Agent '{agent_id}' not found or provider not available", ErrorKind.NOT_FOUND
            )
            return

        async with contextlib.aclosing(self._run_agent(resolved, request, decision, token)) as envelopes:
            async for envelope in envelopes:
                yield envelope

    def _provider_request(
        self, resolved: ResolvedAgent, request: ChatTurnRequest, decision: RouteDecision
    ) -> ProviderRequest:
        agent, provider = resolved.agent, resolved.provider

        images = list(request.images or [])
        if images and not provider.supports_images():
            logger.warning(
                "Agent %s (%s) does not accept images; dropping %d attachment(s)",
                agent.id,
                provider.provider_type.value,
                len(images),
            )
            images = []

        context = []
        if decision.path == RoutePath.ORCHESTRATION and request.available_agents:
            context.append(ContextMessage(role="system", content=describe_agents(request.available_agents)))

        return ProviderRequest(
            message=request.message,
            request_id=request.request_id,
            session_id=request.session_id,
            working_directory=request.working_context or agent.working_context,
            images=images,
            context=context,
        )

    async def _run_agent(
        self,
        resolved: ResolvedAgent,
        request: ChatTurnRequest,
        decision: RouteDecision,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEnvelope]:
        agent = resolved.agent
        options = ProviderOptions(
            cancellation=token,
            temperature=agent.temperature if agent.temperature is not None else DEFAULT_TEMPERATURE,
            max_tokens=agent.max_tokens or DEFAULT_MAX_TOKENS,
            system_prompt=agent.system_prompt,
            debug=self.debug,
        )
        provider_request = self._provider_request(resolved, request, decision)

        async with contextlib.aclosing(resolved.provider.execute(provider_request, options)) as fragments:
            async for fragment in fragments:
                for envelope in self._translate(fragment, agent.id, request.session_id):
                    yield envelope
                if fragment.is_terminal:
                    return

    def _translate(
        self, fragment: ResponseFragment, agent_id: str, session_id: str | None
    ) -> list[StreamEnvelope]:
        envelopes = []
        room = chat_room_message(fragment, agent_id)
        if room is not None:
            envelopes.append(room_envelope(room, session_id))

        if fragment.type == FragmentType.TEXT:
            envelopes.append(
                StreamEnvelope.json_payload(
                    {
                        "type": "assistant",
                        "content": fragment.content,
                        "model": fragment.metadata.get("model"),
                        "session_id": fragment.metadata.get("session_id") or session_id,
                    }
                )
            )
        elif fragment.type == FragmentType.TOOL_USE:
            envelopes.append(
                StreamEnvelope.json_payload(
                    {"type": "tool_use", "name": fragment.tool_name, "input": fragment.tool_input}
                )
            )
        elif fragment.type == FragmentType.DONE:
            envelopes.append(StreamEnvelope.done())
        elif fragment.type == FragmentType.ERROR:
            envelopes.append(
                StreamEnvelope.failure(
                    fragment.error or "Unknown provider error", fragment.error_kind or ErrorKind.ADAPTER
                )
            )
        return envelopes
