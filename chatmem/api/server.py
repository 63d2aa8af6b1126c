"""Async HTTP API for chat turns, memories and conversations.

Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop. Callers are
identified by the ``X-User-Id`` header, which the fronting auth proxy is
expected to set; requests without it are rejected with 401.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from chatmem.chat import ChatRequest, ChatService
from chatmem.config import settings
from chatmem.errors import ConversationNotFound, InvalidMemoryRequest, StoreUnavailableError
from chatmem.memory.models import MEMORY_TYPES, ConversationRecord, MemoryEntry
from chatmem.memory.retriever import MemoryRetriever
from chatmem.memory.store import MemoryStore

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
CONVERSATION_HEADER = "x-conversation-id"

DEFAULT_SEARCH_LIMIT = 10
DEFAULT_SEARCH_MIN_SCORE = 0.3


@dataclass
class Services:
    """Components the request handlers need, built once at startup."""

    store: MemoryStore
    retriever: MemoryRetriever
    chat: ChatService


SERVICES = web.AppKey("services", Services)


def _services(request: web.Request) -> Services:
    return request.app[SERVICES]


def _user_id(request: web.Request) -> str | None:
    return request.headers.get(USER_HEADER, "").strip() or None


def _unauthorized() -> web.Response:
    return web.json_response({"error": "Unauthorized"}, status=401)


async def _json_body(request: web.Request) -> dict[str, Any] | None:
    try:
        payload = await request.json()
    except Exception:
        return None
    return payload if isinstance(payload, dict) else None


async def _owned_conversation(
    store: MemoryStore, conversation_id: str, user_id: str
) -> ConversationRecord:
    record = await store.get_conversation(conversation_id)
    if record is None or record.user_id != user_id:
        raise ConversationNotFound(conversation_id)
    return record


def parse_memory_request(payload: dict[str, Any]) -> tuple[str, str, str, int]:
    """Validate a manual memory body into (conversation_id, content, type, importance)."""
    conversation_id = payload.get("conversationId")
    content = payload.get("content")
    if not conversation_id or not content:
        raise InvalidMemoryRequest("Conversation ID and content are required")
    if not isinstance(conversation_id, str) or not isinstance(content, str):
        raise InvalidMemoryRequest("Conversation ID and content must be strings")

    memory_type = payload.get("type", "context")
    if memory_type not in MEMORY_TYPES:
        raise InvalidMemoryRequest(f"type must be one of: {', '.join(MEMORY_TYPES)}")

    importance = payload.get("importance", 5)
    if isinstance(importance, bool) or not isinstance(importance, int) or not 1 <= importance <= 10:
        raise InvalidMemoryRequest("importance must be an integer from 1 to 10")

    return conversation_id, content, memory_type, importance


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map core errors to JSON responses."""
    try:
        return await handler(request)
    except InvalidMemoryRequest as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except ConversationNotFound:
        return web.json_response({"error": "Conversation not found"}, status=404)
    except StoreUnavailableError:
        logger.exception("Store unavailable: %s %s", request.method, request.path)
        return web.json_response({"error": "Storage unavailable"}, status=500)


# -- Health ------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


# -- Chat --------------------------------------------------------------------


async def _handle_chat(request: web.Request) -> web.StreamResponse:
    """POST /chat — stream one assistant turn as plain text."""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    payload = await _json_body(request)
    if payload is None:
        return web.json_response({"error": "invalid JSON"}, status=400)
    try:
        chat_request = ChatRequest.model_validate(payload)
    except ValidationError as exc:
        return web.json_response({"error": "Invalid chat request", "details": str(exc)}, status=400)

    turn = await _services(request).chat.start_turn(chat_request, user_id)

    response = web.StreamResponse(
        headers={
            "Content-Type": "text/plain; charset=utf-8",
            CONVERSATION_HEADER: turn.conversation_id,
        }
    )
    await response.prepare(request)

    try:
        async with aclosing(turn.stream()) as fragments:
            async for fragment in fragments:
                await response.write(fragment.encode("utf-8"))
    except ConnectionResetError:
        logger.info("Client disconnected from %s mid-stream", turn.conversation_id)
    except Exception:
        logger.exception("Generation failed for %s", turn.conversation_id)
    finally:
        # Write-back completes before the response is closed.
        await turn.finish()

    try:
        await response.write_eof()
    except ConnectionResetError:
        logger.debug("Client gone before end of stream for %s", turn.conversation_id)
    return response


# -- Memory ------------------------------------------------------------------


async def _search_memories(request: web.Request) -> web.Response:
    """GET /memory?conversationId&query&limit&minScore"""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    conversation_id = request.query.get("conversationId")
    if not conversation_id:
        return web.json_response({"error": "Conversation ID is required"}, status=400)

    query = request.query.get("query", "")
    try:
        limit = int(request.query.get("limit", DEFAULT_SEARCH_LIMIT))
        min_score = float(request.query.get("minScore", DEFAULT_SEARCH_MIN_SCORE))
    except ValueError:
        return web.json_response({"error": "limit and minScore must be numbers"}, status=400)

    services = _services(request)
    try:
        await _owned_conversation(services.store, conversation_id, user_id)
    except StoreUnavailableError:
        logger.warning("Memory search degraded for %s: store unavailable", conversation_id)
        return web.json_response({"memories": []})

    memories = await services.retriever.retrieve(query, conversation_id, limit, min_score)
    return web.json_response({"memories": [m.model_dump(by_alias=True) for m in memories]})


async def _add_memory(request: web.Request) -> web.Response:
    """POST /memory {conversationId, content, type, importance}"""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    payload = await _json_body(request)
    if payload is None:
        return web.json_response({"error": "invalid JSON"}, status=400)
    conversation_id, content, memory_type, importance = parse_memory_request(payload)

    store = _services(request).store
    await _owned_conversation(store, conversation_id, user_id)

    entry = MemoryEntry.create(
        content,
        conversation_id=conversation_id,
        user_id=user_id,
        type=memory_type,
        importance=importance,
    )
    if not await store.add_memory_entry(entry):
        raise ConversationNotFound(conversation_id)

    logger.info("Manual memory %s added to %s", entry.id, conversation_id)
    return web.json_response(
        {"success": True, "memoryId": entry.id, "message": "Memory added successfully"}
    )


async def _delete_memory(request: web.Request) -> web.Response:
    """DELETE /memory?conversationId&memoryId — unknown ids are a no-op."""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    conversation_id = request.query.get("conversationId")
    memory_id = request.query.get("memoryId")
    if not conversation_id or not memory_id:
        return web.json_response(
            {"error": "Conversation ID and memory ID are required"}, status=400
        )

    store = _services(request).store
    await _owned_conversation(store, conversation_id, user_id)
    await store.delete_memory_entry(conversation_id, memory_id)
    return web.json_response({"success": True, "message": "Memory deleted successfully"})


# -- Conversations -----------------------------------------------------------


def _conversation_summary(record: ConversationRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "title": record.title,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
    }


async def _list_conversations(request: web.Request) -> web.Response:
    """GET /conversations — the caller's most recent conversations."""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    records = await _services(request).store.list_conversations(
        user_id, limit=settings.conversation_list_limit
    )
    return web.json_response({"conversations": [_conversation_summary(r) for r in records]})


async def _rename_conversation(request: web.Request) -> web.Response:
    """PATCH /conversations/{id} {title}"""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    conversation_id = request.match_info["conversation_id"]
    payload = await _json_body(request)
    title = payload.get("title") if payload else None
    if not isinstance(title, str) or not title.strip():
        return web.json_response({"error": "Valid title is required"}, status=400)

    record = await _services(request).store.rename_conversation(
        conversation_id, user_id, title.strip()
    )
    if record is None:
        raise ConversationNotFound(conversation_id)

    return web.json_response(
        {
            "success": True,
            "conversation": {
                "id": record.id,
                "title": record.title,
                "updatedAt": record.updated_at,
            },
        }
    )


async def _delete_conversation(request: web.Request) -> web.Response:
    """DELETE /conversations/{id} — removes the conversation and its messages."""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    conversation_id = request.match_info["conversation_id"]
    store = _services(request).store
    await _owned_conversation(store, conversation_id, user_id)
    await store.delete_conversation(conversation_id)
    return web.json_response({"success": True})


async def _list_messages(request: web.Request) -> web.Response:
    """GET /conversations/{id}/messages — oldest first."""
    user_id = _user_id(request)
    if user_id is None:
        return _unauthorized()

    conversation_id = request.match_info["conversation_id"]
    store = _services(request).store
    await _owned_conversation(store, conversation_id, user_id)
    messages = await store.list_messages(conversation_id)
    return web.json_response({"messages": [m.model_dump(by_alias=True) for m in messages]})


def create_web_app(services: Services) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_error_middleware])
    app[SERVICES] = services
    app.router.add_get("/health", _health)
    app.router.add_post("/chat", _handle_chat)
    app.router.add_get("/memory", _search_memories)
    app.router.add_post("/memory", _add_memory)
    app.router.add_delete("/memory", _delete_memory)
    app.router.add_get("/conversations", _list_conversations)
    app.router.add_patch("/conversations/{conversation_id}", _rename_conversation)
    app.router.add_delete("/conversations/{conversation_id}", _delete_conversation)
    app.router.add_get("/conversations/{conversation_id}/messages", _list_messages)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self, services: Services, host: str | None = None, port: int | None = None
    ) -> None:
        self.services = services
        self.host = host or settings.api_host
        self.port = port or settings.api_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for API requests."""
        app = create_web_app(self.services)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("API server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("API server stopped")
