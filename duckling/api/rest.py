"""REST API for the duckling engine.

Endpoints:
  GET    /status                   - Pet status snapshot + mood + attention message
  POST   /feed | /clean | /play    - Care actions (ignored while dead)
  POST   /revive                   - Reset the pet to neutral and alive
  POST   /chat                     - Send a message, get the duck's reply
  GET    /chat/history             - Stored conversation turns
  DELETE /chat/history             - Forget the conversation
  GET    /settings                 - Language, pet name, API key status
  PUT    /settings                 - Update language, pet name and/or API key
  GET    /scheduler                - Auto-comment state
  POST   /scheduler/comments/pause - Pause auto-comments
  POST   /scheduler/comments/resume - Resume auto-comments
  GET    /events                   - Server-sent stream of engine events
  GET    /health                   - Health check (DB connectivity)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from duckling.chat.gateway import AIGateway
from duckling.config import Settings
from duckling.errors import ValidationError
from duckling.events import HISTORY_CLEARED, PUBLIC_EVENTS, Event, EventBus
from duckling.handlers.task_scheduler import TaskScheduler
from duckling.i18n import SUPPORTED_LANGUAGES
from duckling.pet.lifecycle import LifecycleController, snapshot
from duckling.storage.database import Database
from duckling.utils import format_duration

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


async def event_stream(
    bus: EventBus,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Server-sent event frames for every public bus event.

    Subscribes on first iteration and unsubscribes when the consumer goes away.
    A comment frame is sent whenever the stream has been idle for `keepalive`.
    """
    queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=100)

    async def enqueue(event: Event) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event stream client too slow, dropping %s", event.type)

    for event_type in PUBLIC_EVENTS:
        bus.on(event_type, enqueue)
    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield event.to_sse()
    finally:
        for event_type in PUBLIC_EVENTS:
            bus.off(event_type, enqueue)


def create_app(
    lifecycle: LifecycleController,
    gateway: AIGateway,
    scheduler: TaskScheduler,
    bus: EventBus,
    database: Database,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    def status_body() -> dict[str, Any]:
        status = lifecycle.status
        body = snapshot(status)
        body["needs_attention"] = lifecycle.needs_attention(status)
        body["attention_message"] = lifecycle.attention_message(status)
        warning = lifecycle.warning(status)
        body["warning"] = (
            {"cause": warning[0], "message": warning[1], "imminent": lifecycle.is_death_imminent(status)}
            if warning
            else None
        )
        if status.is_dead:
            body["death_message"] = lifecycle.death_message()
            body["death_explanation"] = lifecycle.death_explanation()
        return body

    async def status(request: Request) -> JSONResponse:
        """GET /status - Current pet status."""
        return JSONResponse(status_body())

    def care_endpoint(action: str):
        async def handler(request: Request) -> JSONResponse:
            if lifecycle.status.is_dead:
                return JSONResponse(
                    {"error": "Pet is dead", "death_message": lifecycle.death_message()},
                    status_code=409,
                )
            await getattr(lifecycle, action)()
            return JSONResponse(status_body())

        handler.__name__ = f"{action}_pet"
        return handler

    async def revive(request: Request) -> JSONResponse:
        """POST /revive - Reset the pet."""
        await lifecycle.revive()
        return JSONResponse(status_body())

    async def chat(request: Request) -> JSONResponse:
        """POST /chat - Send a message, get a response."""
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        message = body.get("message") if isinstance(body, dict) else None
        if not isinstance(message, str):
            return JSONResponse({"error": "Missing required field: message"}, status_code=400)

        try:
            reply = await gateway.send_message(
                message,
                attach_context=bool(body.get("attach_context", False)),
            )
        except ValidationError as e:
            return JSONResponse({"error": e.message, "reason": e.reason}, status_code=400)
        return JSONResponse({
            "reply": reply,
            "history_length": gateway.history.get_history_length(),
        })

    async def get_history(request: Request) -> JSONResponse:
        """GET /chat/history - Stored conversation."""
        return JSONResponse({
            "entries": gateway.history.as_messages(),
            "total": len(gateway.history),
        })

    async def clear_history(request: Request) -> JSONResponse:
        """DELETE /chat/history - Forget the conversation."""
        await gateway.clear_history()
        await bus.emit(Event(type=HISTORY_CLEARED))
        return JSONResponse({"status": "cleared"})

    def settings_body() -> dict[str, Any]:
        return {
            "language": gateway.localizer.language,
            "languages": list(SUPPORTED_LANGUAGES),
            "pet_name": gateway.pet_name,
            "api_key_status": gateway.api_key_status(),
        }

    async def get_settings(request: Request) -> JSONResponse:
        """GET /settings - User-facing settings (the key itself is never returned)."""
        return JSONResponse(settings_body())

    async def update_settings(request: Request) -> JSONResponse:
        """PUT /settings - Update any of language, pet_name, api_key."""
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Expected a JSON object"}, status_code=400)
        for field in ("language", "pet_name", "api_key"):
            value = body.get(field)
            if value is not None and not isinstance(value, str):
                return JSONResponse({"error": f"{field} must be a string"}, status_code=400)

        language = body.get("language")
        if language is not None:
            try:
                await gateway.localizer.set_language(language)
            except ValueError as e:
                return JSONResponse({"error": str(e)}, status_code=400)
        if "pet_name" in body:
            await gateway.set_pet_name(body.get("pet_name") or "")
        if "api_key" in body:
            await gateway.set_api_key(body.get("api_key") or "")
        return JSONResponse(settings_body())

    def scheduler_body() -> dict[str, Any]:
        remaining = scheduler.time_until_next_comment()
        return {
            "auto_comments_active": scheduler.auto_comments_active,
            "paused_due_to_death": scheduler.paused_due_to_death,
            "next_comment_in": remaining.total_seconds() if remaining is not None else None,
            "next_comment_in_text": format_duration(remaining) if remaining is not None else None,
            "status_tick_interval": settings.status_tick_interval,
            "auto_comment_delay_range": [
                settings.auto_comment_min_delay,
                settings.auto_comment_max_delay,
            ],
        }

    async def scheduler_state(request: Request) -> JSONResponse:
        """GET /scheduler - Auto-comment state."""
        return JSONResponse(scheduler_body())

    async def pause_comments(request: Request) -> JSONResponse:
        if not scheduler.pause_auto_comments():
            return JSONResponse({"error": "Pet is dead", **scheduler_body()}, status_code=409)
        return JSONResponse(scheduler_body())

    async def resume_comments(request: Request) -> JSONResponse:
        if not scheduler.resume_auto_comments():
            return JSONResponse({"error": "Pet is dead", **scheduler_body()}, status_code=409)
        return JSONResponse(scheduler_body())

    async def events(request: Request) -> StreamingResponse:
        """GET /events - SSE stream of engine events."""
        return StreamingResponse(
            event_stream(bus),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Health check failed: %s", e)
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)
        return JSONResponse({
            "status": "healthy",
            "alive": not lifecycle.status.is_dead,
            "event_queue": bus.pending,
            "events_dropped": bus.dropped,
        })

    routes = [
        Route("/status", status),
        Route("/feed", care_endpoint("feed"), methods=["POST"]),
        Route("/clean", care_endpoint("clean"), methods=["POST"]),
        Route("/play", care_endpoint("play"), methods=["POST"]),
        Route("/revive", revive, methods=["POST"]),
        Route("/chat", chat, methods=["POST"]),
        Route("/chat/history", get_history),
        Route("/chat/history", clear_history, methods=["DELETE"]),
        Route("/settings", get_settings),
        Route("/settings", update_settings, methods=["PUT"]),
        Route("/scheduler", scheduler_state),
        Route("/scheduler/comments/pause", pause_comments, methods=["POST"]),
        Route("/scheduler/comments/resume", resume_comments, methods=["POST"]),
        Route("/events", events),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
