from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from hobbyhub.db.session import SessionLocal
from hobbyhub.models.event import Event
from hobbyhub.services.auth import AuthUser, get_current_user_from_ws
from hobbyhub.services.conversations import is_active_member
from hobbyhub.services.events import get_participant
from hobbyhub.services.ws import relay, room_name

logger = logging.getLogger(__name__)

channels_ws_router = APIRouter(tags=["ws"])


async def _authenticate(websocket: WebSocket) -> AuthUser | None:
    try:
        return await get_current_user_from_ws(websocket)
    except HTTPException:
        await websocket.close(code=4401)
        return None


async def _serve(websocket: WebSocket, channel: str) -> None:
    listener_task = None
    try:
        listener_task = asyncio.create_task(relay.subscribe_loop(channel, websocket))

        while True:
            msg = await websocket.receive_text()
            if msg.lower().strip() == "ping":
                await websocket.send_text('{"type":"pong"}')

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WebSocket channel %s failed", channel)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=1011)
    finally:
        if listener_task:
            listener_task.cancel()


@channels_ws_router.websocket("/notifications")
async def ws_user_channel(websocket: WebSocket) -> None:
    await websocket.accept()
    auth_user = await _authenticate(websocket)
    if auth_user is None:
        return
    await _serve(websocket, room_name("user", auth_user.user_id))


@channels_ws_router.websocket("/events/{event_id}")
async def ws_event_channel(websocket: WebSocket, event_id: int) -> None:
    await websocket.accept()
    auth_user = await _authenticate(websocket)
    if auth_user is None:
        return

    async with SessionLocal() as db:
        event = await db.get(Event, event_id)
        if event is None:
            await websocket.close(code=4404)
            return
        allowed = event.host_user_id == auth_user.user_id or (
            await get_participant(db, event_id, auth_user.user_id)
        ) is not None
    if not allowed:
        await websocket.close(code=4403)
        return

    await _serve(websocket, room_name("event", event_id))


@channels_ws_router.websocket("/conversations/{conversation_id}")
async def ws_conversation_channel(websocket: WebSocket, conversation_id: int) -> None:
    await websocket.accept()
    auth_user = await _authenticate(websocket)
    if auth_user is None:
        return

    async with SessionLocal() as db:
        allowed = await is_active_member(db, conversation_id, auth_user.user_id)
    if not allowed:
        await websocket.close(code=4403)
        return

    await _serve(websocket, room_name("conversation", conversation_id))
