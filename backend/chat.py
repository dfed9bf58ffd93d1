from datetime import datetime

from fastapi import APIRouter, Depends, Form, HTTPException, WebSocket, status

from auth import get_user_from_token, user_from_token
from database import get_db, create_document, get_documents, get_by_id, map_doc
from live import conversation_channel, publish, stream_snapshots
from schemas import Conversation, Message, to_document
from users import is_blocked

router = APIRouter(tags=["chat"])


async def get_or_create_conversation(user_id1: str, user_id2: str, user_name1: str, user_name2: str) -> dict:
    db = await get_db()
    existing = await db["conversation"].find_one({"participants": {"$all": [user_id1, user_id2]}})
    if existing:
        return existing
    conversation = Conversation(participants=[user_id1, user_id2], participant_names=[user_name1, user_name2])
    return await create_document("conversation", to_document(conversation))


async def get_participant_conversation(conversation_id: str, user: dict) -> dict:
    conversation = await get_by_id("conversation", conversation_id, "Conversation not found")
    if str(user["_id"]) not in conversation["participants"]:
        raise HTTPException(403, "Not participant")
    return conversation


async def list_messages(conversation_id: str):
    docs = await get_documents("message", {"conversation_id": conversation_id}, sort_dir=1)
    return [map_doc(d) for d in docs]


def sort_key(conversation: dict):
    return conversation.get("last_message_time") or datetime.min


@router.get("/conversations")
async def list_conversations(current_user: dict = Depends(get_user_from_token)):
    docs = await get_documents("conversation", {"participants": str(current_user["_id"])})
    docs.sort(key=sort_key, reverse=True)
    return [map_doc(d) for d in docs]


@router.post("/conversations")
async def start_conversation(user_id: str = Form(...), current_user: dict = Depends(get_user_from_token)):
    me_id = str(current_user["_id"])
    if user_id == me_id:
        raise HTTPException(400, "You cannot start a chat with yourself")
    other = await get_by_id("user", user_id, "User not found")
    if await is_blocked(user_id, me_id):
        raise HTTPException(403, "You cannot message this user")
    conversation = await get_or_create_conversation(me_id, user_id, current_user["name"], other["name"])
    return map_doc(conversation)


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, current_user: dict = Depends(get_user_from_token)):
    return map_doc(await get_participant_conversation(conversation_id, current_user))


@router.get("/conversations/{conversation_id}/messages")
async def get_messages(conversation_id: str, current_user: dict = Depends(get_user_from_token)):
    await get_participant_conversation(conversation_id, current_user)
    return await list_messages(conversation_id)


@router.post("/conversations/{conversation_id}/messages")
async def send_message(conversation_id: str, text: str = Form(...), current_user: dict = Depends(get_user_from_token)):
    conversation = await get_participant_conversation(conversation_id, current_user)
    me_id = str(current_user["_id"])
    if not text.strip():
        raise HTTPException(400, "Message cannot be empty")
    for other_id in conversation["participants"]:
        if other_id != me_id and await is_blocked(other_id, me_id):
            raise HTTPException(403, "You cannot message this user")
    msg = Message(conversation_id=conversation_id, sender_id=me_id, sender_name=current_user["name"], text=text)
    msg_doc = await create_document("message", to_document(msg))
    db = await get_db()
    await db["conversation"].update_one(
        {"_id": conversation["_id"]},
        {"$set": {"last_message": text, "last_message_time": msg_doc["created_at"], "updated_at": datetime.utcnow()}},
    )
    publish(conversation_channel(conversation_id))
    return map_doc(msg_doc)


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_feed(websocket: WebSocket, conversation_id: str, token: str = ""):
    user = await user_from_token(token)
    if not user:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        await get_participant_conversation(conversation_id, user)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    await stream_snapshots(websocket, conversation_channel(conversation_id), lambda: list_messages(conversation_id))
