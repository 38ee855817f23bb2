"""Notification routes - WebSocket delivery of event lifecycle messages"""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from app.core.exceptions import AuthenticationError
from app.core.security import token_verifier
from app.services.notification_service import session_registry

logger = logging.getLogger(__name__)

router = APIRouter()

OUTBOX_SIZE = 100


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str = ""):
    """
    WebSocket endpoint for real-time notifications

    The bearer token is passed as the ``token`` query parameter. Messages
    are pushed from service threads through a per-connection queue.
    """
    try:
        principal = await run_in_threadpool(token_verifier.authenticate, token)
    except AuthenticationError as exc:
        logger.warning("Rejected notification socket: %s", exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue(maxsize=OUTBOX_SIZE)

    def _enqueue(message):
        try:
            outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Dropping %s for slow session of user %s", message.get("type"), principal.user_id)

    def sender(message):
        loop.call_soon_threadsafe(_enqueue, message)

    session_id = session_registry.register(principal.user_id, principal.roles, sender)

    async def _drain_incoming():
        # Client frames are ignored; this only notices the disconnect.
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return

    receiver = asyncio.create_task(_drain_incoming())
    try:
        while True:
            getter = asyncio.create_task(outbox.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                break
            await websocket.send_text(json.dumps(getter.result(), default=str))
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        session_registry.unregister(session_id)
