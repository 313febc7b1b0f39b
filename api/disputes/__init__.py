"""Dispute endpoints.

Buyers and sellers open disputes and talk in a per-dispute thread, over HTTP
or a WebSocket. Admins move disputes under review and resolve them.
"""
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from auth import AuthManager, get_auth_manager, get_current_user, require_admin
from disputes import DisputeManager
from errors import MarketplaceError
from .manager import manager
from ..deps import get_dispute_manager, success

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/disputes-api",
    tags=["Disputes"]
)

class OpenDisputeRequest(BaseModel):
    """Request model for opening a dispute."""
    transaction_id: str
    reason: str
    description: str

class MessageRequest(BaseModel):
    """Request model for a thread message."""
    message: str

class StatusRequest(BaseModel):
    """Request model for an admin status change."""
    status: str

class ResolveRequest(BaseModel):
    """Request model for resolving a dispute."""
    outcome: str
    resolution: str

@router.post("/")
async def open_dispute(
    request: OpenDisputeRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """Open a dispute on one of the caller's transactions."""
    dispute = await disputes.open_dispute(
        user['id'],
        request.transaction_id,
        request.reason,
        request.description
    )
    return success(dispute)

@router.get("/")
async def list_my_disputes(
    user: Dict[str, Any] = Depends(get_current_user),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """Disputes on the caller's purchases and sales."""
    return success(await disputes.list_for_user(user['id']))

@router.get("/all", dependencies=[Depends(require_admin)])
async def list_all_disputes(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """Every dispute, oldest first, for admin review."""
    return success(await disputes.list_all(status, limit, offset))

@router.get("/{dispute_id}")
async def get_dispute(
    dispute_id: UUID,
    user: Dict[str, Any] = Depends(get_current_user),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """One dispute, for its parties or an admin."""
    dispute = await disputes.get_for_user(str(dispute_id), user['id'], user.get('is_admin', False))
    return success(dispute)

@router.get("/{dispute_id}/messages")
async def get_messages(
    dispute_id: UUID,
    user: Dict[str, Any] = Depends(get_current_user),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """The dispute thread, oldest first."""
    messages = await disputes.messages(str(dispute_id), user['id'], user.get('is_admin', False))
    return success(messages)

@router.post("/{dispute_id}/messages")
async def post_message(
    dispute_id: UUID,
    request: MessageRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """Add to the thread and push the message to live viewers."""
    message = await disputes.add_message(
        str(dispute_id),
        user['id'],
        request.message,
        user.get('is_admin', False)
    )
    await manager.broadcast_to_channel(str(dispute_id), {"type": "dispute_message", "data": message})
    return success(message)

@router.post("/{dispute_id}/status")
async def set_dispute_status(
    dispute_id: UUID,
    request: StatusRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """Move a dispute between open and under review."""
    dispute = await disputes.set_status(str(dispute_id), request.status)
    await manager.broadcast_to_channel(str(dispute_id), {"type": "dispute_status", "data": dispute})
    return success(dispute)

@router.post("/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: UUID,
    request: ResolveRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """Release or refund the escrow and close the dispute."""
    dispute = await disputes.resolve(str(dispute_id), admin['id'], request.outcome, request.resolution)
    await manager.broadcast_to_channel(str(dispute_id), {"type": "dispute_status", "data": dispute})
    return success(dispute)

@router.websocket("/{dispute_id}/ws")
async def dispute_websocket(
    websocket: WebSocket,
    dispute_id: UUID,
    token: Optional[str] = None,
    auth: AuthManager = Depends(get_auth_manager),
    disputes: DisputeManager = Depends(get_dispute_manager)
):
    """Live dispute thread.

    The token comes from the ``token`` query parameter or, failing that, a
    first ``{"token": ...}`` message. Clients then send ``{"message": ...}``.
    """
    await websocket.accept()
    channel = str(dispute_id)

    try:
        if not token:
            auth_message = await websocket.receive_json()
            if not isinstance(auth_message, dict) or "token" not in auth_message:
                await websocket.close(code=4001, reason="Authentication required")
                return
            token = auth_message["token"]

        try:
            user = await auth.authenticate(token)
            await disputes.get_for_user(channel, user['id'], user['is_admin'])
        except MarketplaceError as e:
            await websocket.close(code=4001 if e.status_code == 401 else 4003, reason=e.message)
            return

        await manager.connect(websocket, channel, user['id'])
        logger.info(f"User {user['id']} joined dispute {channel}")

        try:
            while True:
                data = await websocket.receive_json()
                if not isinstance(data, dict) or "message" not in data:
                    await websocket.send_json({
                        "type": "error",
                        "data": {"message": "Expected {\"message\": ...}"}
                    })
                    continue
                try:
                    message = await disputes.add_message(channel, user['id'], data["message"], user['is_admin'])
                except MarketplaceError as e:
                    await websocket.send_json({"type": "error", "data": jsonable_encoder(e.to_dict())})
                    continue
                await manager.broadcast_to_channel(channel, {"type": "dispute_message", "data": message})
        except WebSocketDisconnect:
            logger.info(f"User {user['id']} left dispute {channel}")
        finally:
            manager.disconnect(websocket, channel)

    except WebSocketDisconnect:
        logger.info(f"Socket closed before joining dispute {channel}")

__all__ = ['router']
