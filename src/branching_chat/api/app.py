"""
HTTP API.

'create_app' wires the turn store, the provider registry and the orchestrator
into a FastAPI application. Fan-out and compare are streamed as Server-Sent
Events; when the client goes away mid-stream the run is told to disconnect,
which seals every in-flight turn with the content received so far.

Request-level failures ('ValidationError', 'NotFoundError', malformed bodies)
are rendered as '{"error": ..., "message": ...}' with the matching status code
before any side effect. Provider failures never produce an HTTP error; they
arrive as 'error' events and as "Error: ..." turn content.
"""

from collections.abc import AsyncIterator

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from loguru import logger

from branching_chat.api.schemas import (
    CancelResponse,
    CompareInput,
    ConversationInput,
    ConversationWithTurns,
    FanOutInput,
    ProviderStatus,
)
from branching_chat.branching.resolver import resolve_branch, validate_branch_id
from branching_chat.config import Settings
from branching_chat.conversation_database.data_models.conversation import Conversation
from branching_chat.conversation_database.data_models.turn import Turn
from branching_chat.conversation_database.store import TurnStore
from branching_chat.errors import BranchingChatError
from branching_chat.llms.registry import ProviderRegistry
from branching_chat.orchestration.fan_out import (
    CompareRequest,
    FanOutOrchestrator,
    FanOutRequest,
    FanOutResult,
    FanOutRun,
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def event_stream(run: FanOutRun) -> StreamingResponse:
    async def stream() -> AsyncIterator[bytes]:
        try:
            async for event in run.events():
                yield event.encode()
        finally:
            run.disconnect()

    return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)


def build_router(store: TurnStore, registry: ProviderRegistry, orchestrator: FanOutOrchestrator) -> APIRouter:
    router = APIRouter(prefix="/api")

    @router.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/providers", response_model=list[ProviderStatus])
    async def providers() -> list[ProviderStatus]:
        return [ProviderStatus(provider=p, has_credential=registry.has_credential(p)) for p in registry.providers]

    @router.get("/conversations", response_model=list[Conversation])
    async def list_conversations() -> list[Conversation]:
        return await store.list_conversations()

    @router.post("/conversations", response_model=Conversation, status_code=201)
    async def create_conversation(body: ConversationInput) -> Conversation:
        return await store.create_conversation(body.title)

    @router.get("/conversations/{conversation_id}", response_model=ConversationWithTurns)
    async def get_conversation(conversation_id: str) -> ConversationWithTurns:
        conversation = await store.get_conversation(conversation_id)
        turns = await store.list_all(conversation_id)
        return ConversationWithTurns(**conversation.model_dump(), turns=turns)

    @router.delete("/conversations/{conversation_id}", status_code=204)
    async def delete_conversation(conversation_id: str) -> Response:
        await store.get_conversation(conversation_id)
        await store.delete_conversation(conversation_id)
        return Response(status_code=204)

    @router.get("/conversations/{conversation_id}/turns", response_model=list[Turn])
    async def list_turns(conversation_id: str) -> list[Turn]:
        return await store.list_all(conversation_id)

    @router.get("/conversations/{conversation_id}/branches/{branch_id}", response_model=list[Turn])
    async def get_branch(conversation_id: str, branch_id: str) -> list[Turn]:
        validate_branch_id(branch_id)
        return resolve_branch(await store.list_all(conversation_id), branch_id)

    @router.post("/conversations/{conversation_id}/turns", response_model=FanOutResult, status_code=201)
    async def fan_out_and_wait(conversation_id: str, body: FanOutInput) -> FanOutResult:
        run = await orchestrator.fan_out(
            FanOutRequest(conversation_id=conversation_id, **body.model_dump()), streaming=False
        )
        return await run.wait()

    @router.post("/conversations/{conversation_id}/stream")
    async def fan_out_stream(conversation_id: str, body: FanOutInput) -> StreamingResponse:
        run = await orchestrator.fan_out(FanOutRequest(conversation_id=conversation_id, **body.model_dump()))
        return event_stream(run)

    @router.post("/conversations/{conversation_id}/compare")
    async def compare_stream(conversation_id: str, body: CompareInput) -> StreamingResponse:
        run = await orchestrator.compare(CompareRequest(conversation_id=conversation_id, **body.model_dump()))
        return event_stream(run)

    @router.post("/turns/{turn_id}/cancel", response_model=CancelResponse)
    async def cancel_turn(turn_id: str) -> CancelResponse:
        return CancelResponse(turn_id=turn_id, cancelled=orchestrator.cancel_turn(turn_id))

    return router


def create_app(
    settings: Settings | None = None,
    registry: ProviderRegistry | None = None,
    store: TurnStore | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store or TurnStore.from_settings(settings)
    registry = registry or ProviderRegistry.from_settings(settings)
    orchestrator = FanOutOrchestrator(store, registry, settings)

    app = FastAPI(
        title="Branching Chat",
        description="Multi-provider branching conversations with concurrent streaming",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.orchestrator = orchestrator

    @app.exception_handler(BranchingChatError)
    async def handle_branching_chat_error(request: Request, exc: BranchingChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": type(exc).__name__, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "ValidationError",
                "message": "The request data is invalid",
                "details": jsonable_errors(exc),
            },
        )

    app.include_router(build_router(store, registry, orchestrator))
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    return [{"loc": list(error.get("loc", ())), "msg": error.get("msg", "")} for error in exc.errors()]
