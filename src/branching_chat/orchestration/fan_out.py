"""
Fan-out and compare orchestration.

'FanOutOrchestrator' sends one prompt to several providers at once. Each
provider gets its own assistant turn on its own branch and its own session
task; sessions share nothing but the turn store, and each session is the only
writer of its turn. All sessions of one request feed a single 'FanOutRun',
whose event queue is what the API streams to the caller.

Lifecycle of a run: IDLE -> USER_TURN_PENDING -> STREAMING -> SEALED.

    fan_out  - validates, creates (or reuses, see 'UserTurnDeduplicator') the
               user turn, then starts one session per provider.
    compare  - same sessions against an existing user turn; every provider
               answers on its own model-named branch.

A session never lets a provider failure escape: credential, transport, quota
and unexpected errors are sealed into the turn as "Error: ..." content and
reported as an 'error' event for that provider only. Cancelling a session (or
the caller disconnecting) cancels only its generation task; the session then
seals whatever text has accumulated, so no turn is left empty.
"""

import asyncio
from collections.abc import AsyncIterator
from enum import StrEnum

from loguru import logger
from pydantic import BaseModel, Field

from branching_chat.branching.resolver import build_context, resolve_branch, validate_branch_id
from branching_chat.config import ROOT_BRANCH, Settings
from branching_chat.conversation_database.data_models.turn import Turn
from branching_chat.conversation_database.store import TurnStore
from branching_chat.errors import (
    CredentialMissingError,
    NotFoundError,
    ProviderError,
    ProviderTransportError,
    UnknownProviderError,
    ValidationError,
)
from branching_chat.llms.base import Roles
from branching_chat.llms.registry import ProviderRegistry
from branching_chat.orchestration.accumulator import TurnAccumulator, error_content
from branching_chat.orchestration.dedup import UserTurnDeduplicator
from branching_chat.orchestration.events import StreamEvent


class FanOutRequest(BaseModel):
    conversation_id: str
    content: str
    providers: list[str]
    branch_id: str = ROOT_BRANCH
    parent_turn_id: str | None = None


class CompareRequest(BaseModel):
    conversation_id: str
    user_turn_id: str
    providers: list[str]


class RunState(StrEnum):
    IDLE = "idle"
    USER_TURN_PENDING = "user_turn_pending"
    STREAMING = "streaming"
    SEALED = "sealed"


class SessionOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProviderResult(BaseModel):
    provider: str
    branch_id: str
    outcome: SessionOutcome
    turn: Turn | None = None
    error: str | None = None


class FanOutResult(BaseModel):
    user_turn: Turn
    user_turn_created: bool
    results: list[ProviderResult] = Field(default_factory=list)


class ProviderSession:
    """State of one provider's session within a run."""

    def __init__(self, provider: str, branch_id: str, context_branch_id: str):
        self.provider = provider
        self.branch_id = branch_id
        self.context_branch_id = context_branch_id
        self.turn: Turn | None = None
        self.accumulator: TurnAccumulator | None = None
        self.task: asyncio.Task[None] | None = None
        self.generation: asyncio.Task[None] | None = None
        self.cancel_requested = False
        self.outcome: SessionOutcome | None = None
        self.error: str | None = None

    def cancel(self) -> bool:
        if self.outcome is not None or (self.generation is not None and self.generation.done()):
            return False
        self.cancel_requested = True
        if self.generation is not None:
            self.generation.cancel()
        return True

    def result(self) -> ProviderResult:
        return ProviderResult(
            provider=self.provider,
            branch_id=self.branch_id,
            outcome=self.outcome or SessionOutcome.CANCELLED,
            turn=self.turn,
            error=self.error,
        )


class FanOutRun:
    """
    Handle on one running fan-out or compare request.

    Iterate 'events()' to receive the interleaved event stream; it ends after
    the 'done' event. 'cancel' stops one or all provider sessions,
    'disconnect' is called when the caller goes away, and 'wait' returns the
    final 'FanOutResult' once every session is sealed.
    """

    def __init__(self, user_turn: Turn, user_turn_created: bool, streaming: bool):
        self.user_turn = user_turn
        self.user_turn_created = user_turn_created
        self.streaming = streaming
        self.state = RunState.USER_TURN_PENDING
        self.sessions: dict[str, ProviderSession] = {}
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._finished = asyncio.Event()
        self._supervisor: asyncio.Task[None] | None = None

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def emit(self, event: StreamEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self.state = RunState.SEALED
        self._queue.put_nowait(None)
        self._finished.set()

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def cancel(self, provider: str | None = None) -> list[str]:
        """Cancel one provider's session, or all of them. Returns the providers affected."""
        cancelled = [
            session.provider
            for session in self.sessions.values()
            if (provider is None or session.provider == provider) and session.cancel()
        ]
        if cancelled:
            logger.info(f"Cancelled sessions {cancelled} answering user turn {self.user_turn.id}")
        return cancelled

    def disconnect(self) -> None:
        if not self.finished:
            logger.info(f"Caller disconnected from run for user turn {self.user_turn.id}; sealing partial content")
            self.cancel()

    def owns_turn(self, turn_id: str) -> bool:
        return any(s.turn is not None and s.turn.id == turn_id for s in self.sessions.values())

    def provider_for_turn(self, turn_id: str) -> str | None:
        return next((s.provider for s in self.sessions.values() if s.turn is not None and s.turn.id == turn_id), None)

    async def wait(self) -> FanOutResult:
        await self._finished.wait()
        return FanOutResult(
            user_turn=self.user_turn,
            user_turn_created=self.user_turn_created,
            results=[session.result() for session in self.sessions.values()],
        )


class FanOutOrchestrator:
    def __init__(self, store: TurnStore, registry: ProviderRegistry, settings: Settings):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.deduplicator = UserTurnDeduplicator(store, settings.dedup_window_seconds)
        self._active_runs: set[FanOutRun] = set()

    @property
    def active_runs(self) -> list[FanOutRun]:
        return list(self._active_runs)

    def _validate_providers(self, providers: list[str]) -> list[str]:
        if not providers:
            raise ValidationError("At least one provider must be selected")
        unknown = [p for p in providers if not self.registry.is_known(p)]
        if unknown:
            raise ValidationError(f"Unknown provider(s): {', '.join(unknown)}")
        return list(dict.fromkeys(providers))

    def _validate_content(self, content: str) -> str:
        if not content or not content.strip():
            raise ValidationError("Prompt content is required and cannot be empty")
        if len(content) > self.settings.max_message_length:
            raise ValidationError(f"Prompt exceeds {self.settings.max_message_length} characters")
        return content

    async def _default_parent(self, conversation_id: str, branch_id: str) -> str | None:
        resolved = resolve_branch(await self.store.list_all(conversation_id), branch_id)
        return resolved[-1].id if resolved else None

    async def fan_out(self, request: FanOutRequest, streaming: bool = True) -> FanOutRun:
        """Create (or reuse) the user turn and start one session per provider."""
        content = self._validate_content(request.content)
        providers = self._validate_providers(request.providers)
        branch_id = validate_branch_id(request.branch_id)
        await self.store.get_conversation(request.conversation_id)
        if request.parent_turn_id is not None:
            await self.store.get(request.conversation_id, request.parent_turn_id)

        logger.info(
            f"Fan-out in conversation {request.conversation_id} on branch {branch_id!r} to {providers}"
        )
        parent_turn_id = request.parent_turn_id or await self._default_parent(request.conversation_id, branch_id)
        user_turn, created = await self.deduplicator.get_or_create(
            Turn(
                conversation_id=request.conversation_id,
                parent_turn_id=parent_turn_id,
                branch_id=branch_id,
                role=Roles.USER,
                content=content,
            )
        )

        run = FanOutRun(user_turn, created, streaming)
        for provider in providers:
            # A fan-out from the trunk opens one branch per provider; a non-root branch is continued.
            session_branch = provider if branch_id == ROOT_BRANCH else branch_id
            run.sessions[provider] = ProviderSession(provider, session_branch, session_branch)
        self._start(run)
        return run

    async def compare(self, request: CompareRequest, streaming: bool = True) -> FanOutRun:
        """Fan out an existing user turn again; every provider answers on its own branch."""
        providers = self._validate_providers(request.providers)
        user_turn = await self.store.get(request.conversation_id, request.user_turn_id)
        if user_turn.role != Roles.USER:
            raise NotFoundError(f"User turn with id {request.user_turn_id} not found")

        logger.info(f"Compare on user turn {user_turn.id} with {providers}")
        run = FanOutRun(user_turn, False, streaming)
        for provider in providers:
            context_branch = provider if user_turn.branch_id == ROOT_BRANCH else user_turn.branch_id
            run.sessions[provider] = ProviderSession(provider, provider, context_branch)
        self._start(run)
        return run

    def cancel_turn(self, turn_id: str) -> list[str]:
        """
        Cancel by turn id: an assistant turn id cancels that provider's session,
        a user turn id cancels every session answering it.
        """
        cancelled: list[str] = []
        matched = False
        for run in self.active_runs:
            if run.user_turn.id == turn_id:
                matched = True
                cancelled += run.cancel()
            elif (provider := run.provider_for_turn(turn_id)) is not None:
                matched = True
                cancelled += run.cancel(provider)
        if not matched:
            raise NotFoundError(f"No active session for turn {turn_id}")
        return cancelled

    def _start(self, run: FanOutRun) -> None:
        run.emit(StreamEvent.user_turn(run.user_turn.id))
        run.state = RunState.STREAMING
        for session in run.sessions.values():
            session.task = asyncio.create_task(self._run_session(run, session))
        self._active_runs.add(run)
        run._supervisor = asyncio.create_task(self._supervise(run))

    async def _supervise(self, run: FanOutRun) -> None:
        try:
            await asyncio.gather(*(s.task for s in run.sessions.values() if s.task), return_exceptions=True)
            run.emit(StreamEvent.done())
        finally:
            run.close()
            self._active_runs.discard(run)
            outcomes = {s.provider: s.outcome for s in run.sessions.values()}
            logger.info(f"Run for user turn {run.user_turn.id} sealed: {outcomes}")

    async def _run_session(self, run: FanOutRun, session: ProviderSession) -> None:
        provider = session.provider
        try:
            turn = await self.store.append(
                Turn(
                    conversation_id=run.user_turn.conversation_id,
                    parent_turn_id=run.user_turn.id,
                    branch_id=session.branch_id,
                    role=Roles.ASSISTANT,
                    model=provider,
                    content="",
                    sealed=False,
                )
            )
        except Exception as e:
            logger.exception(f"Could not create the assistant turn for {provider}")
            session.outcome = SessionOutcome.FAILED
            session.error = str(e)
            run.emit(StreamEvent.error(provider, f"could not create turn: {e}"))
            return

        session.turn = turn
        accumulator = session.accumulator = TurnAccumulator(turn.id, provider)
        run.emit(StreamEvent.turn_start(turn.id, provider, run.user_turn.id))

        if not session.cancel_requested:
            session.generation = asyncio.create_task(self._generate(run, session, accumulator))
            await asyncio.wait({session.generation})

        generation = session.generation
        if generation is None or generation.cancelled():
            session.outcome = SessionOutcome.CANCELLED
            if await self._seal(run, session, accumulator.partial_content()):
                run.emit(StreamEvent.turn_end(turn.id, provider))
            return

        failure = generation.exception()
        if failure is None:
            session.outcome = SessionOutcome.COMPLETED
            if await self._seal(run, session, accumulator.text):
                run.emit(StreamEvent.turn_end(turn.id, provider))
            return

        if not isinstance(failure, ProviderError):
            logger.opt(exception=failure).error(f"Unexpected failure in {provider} session")
            failure = UnknownProviderError(provider, str(failure) or type(failure).__name__)
        logger.warning(f"{provider} failed on turn {turn.id}: [{failure.code}] {failure.message}")
        session.outcome = SessionOutcome.FAILED
        session.error = failure.message
        if await self._seal(run, session, error_content(failure.message)):
            run.emit(StreamEvent.error(provider, failure.message, turn.id))
            run.emit(StreamEvent.turn_end(turn.id, provider))

    async def _generate(self, run: FanOutRun, session: ProviderSession, accumulator: TurnAccumulator) -> None:
        provider = session.provider
        if not self.registry.has_credential(provider):
            raise CredentialMissingError(provider)
        llm = self.registry.get(provider)
        turns = await self.store.list_all(run.user_turn.conversation_id)
        history = build_context(
            turns, run.user_turn, session.context_branch_id, self.settings.context_window_for(provider)
        )
        prompt = run.user_turn.content
        timeout = self.settings.provider_timeout_seconds
        loop = asyncio.get_running_loop()

        try:
            async with asyncio.timeout(timeout) as deadline:
                if run.streaming:
                    async for chunk in llm.generate_stream(prompt, history):
                        deadline.reschedule(loop.time() + timeout)
                        if chunk:
                            accumulator.append(chunk)
                            run.emit(StreamEvent.chunk(accumulator.turn_id, provider, chunk))
                else:
                    text = await llm.generate(prompt, history)
                    if text:
                        accumulator.append(text)
                        run.emit(StreamEvent.chunk(accumulator.turn_id, provider, text))
        except TimeoutError as e:
            raise ProviderTransportError(provider, f"{provider} timed out after {timeout:g}s") from e

    async def _seal(self, run: FanOutRun, session: ProviderSession, content: str) -> bool:
        assert session.turn is not None
        try:
            session.turn = await self.store.update_content(session.turn.id, content, seal=True)
            return True
        except Exception as e:
            logger.exception(f"Could not seal turn {session.turn.id} for {session.provider}")
            session.outcome = SessionOutcome.FAILED
            session.error = f"could not persist turn: {e}"
            run.emit(StreamEvent.error(session.provider, session.error, session.turn.id))
            return False
