from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, status

from auth import get_user_from_token, user_from_token
from database import get_db, create_document, get_documents, map_doc, to_object_id
from live import notifications_channel, publish, stream_snapshots
from schemas import Notification, to_document

router = APIRouter(tags=["notifications"])


async def notify(user_id: str, kind: str, title: str, message: str, related_id: Optional[str] = None) -> dict:
    doc = await create_document("notification", to_document(Notification(
        user_id=user_id, type=kind, title=title, message=message, related_id=related_id,
    )))
    publish(notifications_channel(user_id))
    return map_doc(doc)


async def list_notifications(user_id: str, limit: Optional[int] = None):
    docs = await get_documents("notification", {"user_id": user_id}, limit=limit)
    return [map_doc(d) for d in docs]


@router.get("/notifications")
async def get_notifications(limit: int = Query(50, ge=1, le=200), current_user: dict = Depends(get_user_from_token)):
    user_id = str(current_user["_id"])
    db = await get_db()
    unread = await db["notification"].count_documents({"user_id": user_id, "read": False})
    return {"items": await list_notifications(user_id, limit), "unread_count": unread}


@router.post("/notifications/read-all")
async def mark_all_read(current_user: dict = Depends(get_user_from_token)):
    user_id = str(current_user["_id"])
    db = await get_db()
    res = await db["notification"].update_many(
        {"user_id": user_id, "read": False},
        {"$set": {"read": True, "updated_at": datetime.utcnow()}},
    )
    publish(notifications_channel(user_id))
    return {"ok": True, "updated": res.modified_count}


@router.post("/notifications/{notification_id}/read")
async def mark_read(notification_id: str, current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    doc = await db["notification"].find_one({"_id": to_object_id(notification_id)})
    if not doc:
        raise HTTPException(404, "Notification not found")
    if doc["user_id"] != str(current_user["_id"]):
        raise HTTPException(403, "Not your notification")
    await db["notification"].update_one({"_id": doc["_id"]}, {"$set": {"read": True, "updated_at": datetime.utcnow()}})
    publish(notifications_channel(doc["user_id"]))
    return {"ok": True}


@router.websocket("/ws/notifications")
async def notifications_feed(websocket: WebSocket, token: str = ""):
    user = await user_from_token(token)
    if not user:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    user_id = str(user["_id"])
    await stream_snapshots(websocket, notifications_channel(user_id), lambda: list_notifications(user_id, 50))
