# module marketplace.realtime.views

"""WebSocket /ws/marketplace-chat: salons temps réel par Service.

Trames JSON {"event": <nom>, "data": {...}}:
- joinServiceChat {serviceId}  -> joinedServiceChat {serviceId} (participants uniquement)
- leaveServiceChat {serviceId} -> leftServiceChat {serviceId}
- sendMessage {serviceId, message} -> newMessage relu en base et relayé une seule fois
- error {code, detail}: trame invalide ou action refusée, la connexion reste ouverte
"""
import asyncio
import json
import logging
from typing import Any, Dict
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from marketplace.errors import MarketplaceError
from marketplace.negotiation.service import NegotiationService, get_negotiation_service
from marketplace.utils.security import authenticate_websocket

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Realtime"])

JOIN = "joinServiceChat"
LEAVE = "leaveServiceChat"
SEND = "sendMessage"


def error_frame(code: str, detail: str) -> Dict[str, Any]:
    return {"event": "error", "data": {"code": code, "detail": detail}}


@router.websocket("/ws/marketplace-chat")
async def marketplace_chat(websocket: WebSocket, service: NegotiationService = Depends(get_negotiation_service)):
    try:
        user = authenticate_websocket(websocket)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()

    channels = service.channels
    connection_id = uuid4().hex
    send_lock = asyncio.Lock()

    async def send(frame: Dict[str, Any]) -> None:
        # Un seul envoi à la fois par connexion (diffusions et accusés)
        async with send_lock:
            await websocket.send_json(frame)

    channels.register(connection_id, send)
    logger.debug("ws connected %s user=%s", connection_id, user["id"])
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                event = frame["event"]
                data = frame.get("data") or {}
                if not isinstance(data, dict):
                    raise ValueError("data must be an object")
            except (ValueError, KeyError, TypeError, AttributeError):
                await send(error_frame("bad_request", "Trame invalide"))
                continue

            service_id = str(data.get("serviceId") or "")
            try:
                if event == JOIN:
                    if not service_id:
                        await send(error_frame("bad_request", "serviceId manquant"))
                        continue
                    await service.ensure_participant(service_id, user["id"])
                    channels.join(service_id, connection_id)
                    await send({"event": "joinedServiceChat", "data": {"serviceId": service_id}})
                elif event == LEAVE:
                    channels.leave(service_id, connection_id)
                    await send({"event": "leftServiceChat", "data": {"serviceId": service_id}})
                elif event == SEND:
                    message = data.get("message") or {}
                    if not isinstance(message, dict):
                        await send(error_frame("bad_request", "message doit être un objet"))
                        continue
                    message_id = str(message.get("id") or data.get("messageId") or "")
                    if not service_id or not message_id:
                        await send(error_frame("bad_request", "serviceId et message.id requis"))
                        continue
                    if connection_id not in channels.members(service_id):
                        await send(error_frame("not_joined", "Rejoignez le salon avant d'envoyer"))
                        continue
                    await service.relay_message(service_id, message_id, user["id"])
                else:
                    await send(error_frame("unknown_event", f"Événement inconnu: {event}"))
            except MarketplaceError as e:
                await send(error_frame(e.code, e.detail))
    except WebSocketDisconnect:
        pass
    finally:
        channels.unregister(connection_id)
        logger.debug("ws disconnected %s", connection_id)
