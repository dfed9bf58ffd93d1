import logging
from datetime import datetime

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException

from auth import get_user_from_token
from chat import get_or_create_conversation
from database import get_db, create_document, get_documents, get_by_id, map_doc
from emails import send_email, request_notification_email, accepted_notification_email
from items import complete_donation, is_expired
from live import MARKETPLACE, publish
from notifications import notify
from schemas import ItemRequest, to_document
from users import is_blocked

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["requests"])

# action -> (required current status, new status)
TRANSITIONS = {
    "accept": ("pending", "accepted"),
    "decline": ("pending", "declined"),
    "complete": ("accepted", "completed"),
}
DELETABLE = ("pending", "declined")

# Utils

async def transition(req: dict, action: str) -> dict:
    """Move ``req`` along TRANSITIONS, or 409 if it is not in the required state.

    The update is conditional on the current status, so of two concurrent
    calls only one wins.
    """
    expected, new_status = TRANSITIONS[action]
    if req["status"] != expected:
        raise HTTPException(409, f"Cannot {action} a {req['status']} request")
    db = await get_db()
    res = await db["itemrequest"].update_one(
        {"_id": req["_id"], "status": expected},
        {"$set": {"status": new_status, "updated_at": datetime.utcnow()}},
    )
    if res.modified_count == 0:
        raise HTTPException(409, f"Cannot {action} this request, it was changed by someone else")
    req["status"] = new_status
    logger.info("Request %s %s", req["_id"], new_status)
    return req

async def get_owned_request(req_id: str, user: dict) -> dict:
    req = await get_by_id("itemrequest", req_id, "Request not found")
    if str(req["receiver_id"]) != str(user["_id"]):
        raise HTTPException(403, "Not owner")
    return req

async def user_email(user_id: str):
    db = await get_db()
    user = await db["user"].find_one({"_id": ObjectId(user_id)}, {"email": 1})
    return user["email"] if user else None

# Request endpoints

@router.post("")
async def create_request(
    background_tasks: BackgroundTasks,
    item_id: str = Form(...),
    message: str = Form(""),
    current_user: dict = Depends(get_user_from_token),
):
    db = await get_db()
    item = await get_by_id("item", item_id, "Item not found")
    sender_id = str(current_user["_id"])
    if item["owner_id"] == sender_id:
        raise HTTPException(400, "You cannot request your own item")
    if item.get("status") != "available" or item.get("archived") or is_expired(item):
        raise HTTPException(400, "Item not available")
    if await is_blocked(item["owner_id"], sender_id):
        raise HTTPException(403, "You cannot request items from this user")
    duplicate = await db["itemrequest"].find_one({"item_id": item_id, "sender_id": sender_id, "status": "pending"})
    if duplicate:
        raise HTTPException(409, "You already have a pending request for this item")
    req = ItemRequest(
        item_id=item_id,
        item_title=item["title"],
        sender_id=sender_id,
        sender_name=current_user["name"],
        receiver_id=item["owner_id"],
        message=message,
    )
    req_doc = await create_document("itemrequest", to_document(req))
    await db["user"].update_one({"_id": current_user["_id"]}, {"$inc": {"total_requests": 1}})
    await notify(
        item["owner_id"], "request",
        f'New request for "{item["title"]}"',
        f'{current_user["name"]} requested your item',
        related_id=str(req_doc["_id"]),
    )
    owner_email = await user_email(item["owner_id"])
    if owner_email:
        background_tasks.add_task(
            send_email, owner_email, f'New request for "{item["title"]}"',
            request_notification_email(current_user["name"], item["title"]),
        )
    logger.info("Request %s created for item %s", req_doc["_id"], item_id)
    return map_doc(req_doc)

@router.get("")
async def list_requests(view: str = "all", current_user: dict = Depends(get_user_from_token)):
    user_id = str(current_user["_id"])
    if view == "sent":
        flt = {"sender_id": user_id}
    elif view == "received":
        flt = {"receiver_id": user_id}
    else:
        flt = {"$or": [{"sender_id": user_id}, {"receiver_id": user_id}]}
    docs = await get_documents("itemrequest", flt)
    return [map_doc(d) for d in docs]

@router.get("/{req_id}")
async def get_request(req_id: str, current_user: dict = Depends(get_user_from_token)):
    req = await get_by_id("itemrequest", req_id, "Request not found")
    if str(current_user["_id"]) not in (req["sender_id"], req["receiver_id"]):
        raise HTTPException(403, "Not participant")
    return map_doc(req)

@router.post("/{req_id}/accept")
async def accept_request(req_id: str, background_tasks: BackgroundTasks, current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    req = await transition(await get_owned_request(req_id, current_user), "accept")
    await db["item"].update_one(
        {"_id": ObjectId(req["item_id"]), "status": "available"},
        {"$set": {"status": "requested", "updated_at": datetime.utcnow()}},
    )
    publish(MARKETPLACE)
    conversation = await get_or_create_conversation(
        req["receiver_id"], req["sender_id"], current_user["name"], req["sender_name"],
    )
    conversation_id = str(conversation["_id"])
    await db["itemrequest"].update_one({"_id": req["_id"]}, {"$set": {"conversation_id": conversation_id}})
    await notify(
        req["sender_id"], "accepted",
        f'Request accepted for "{req["item_title"]}"',
        f'{current_user["name"]} accepted your request',
        related_id=conversation_id,
    )
    sender_email = await user_email(req["sender_id"])
    if sender_email:
        background_tasks.add_task(
            send_email, sender_email, "Your request was accepted!",
            accepted_notification_email(req["item_title"], conversation_id),
        )
    return {"ok": True, "conversation_id": conversation_id}

@router.post("/{req_id}/decline")
async def decline_request(req_id: str, current_user: dict = Depends(get_user_from_token)):
    req = await transition(await get_owned_request(req_id, current_user), "decline")
    await notify(
        req["sender_id"], "declined",
        f'Request declined for "{req["item_title"]}"',
        f'{current_user["name"]} declined your request',
        related_id=str(req["_id"]),
    )
    return {"ok": True}

@router.post("/{req_id}/complete")
async def complete_request(req_id: str, current_user: dict = Depends(get_user_from_token)):
    req = await transition(await get_owned_request(req_id, current_user), "complete")
    db = await get_db()
    item = await db["item"].find_one({"_id": ObjectId(req["item_id"])})
    awarded = False
    if item:
        awarded = await complete_donation(item, receiver_id=req["sender_id"])
    return {"ok": True, "eco_points_awarded": awarded}

@router.delete("/{req_id}")
async def delete_request(req_id: str, current_user: dict = Depends(get_user_from_token)):
    req = await get_by_id("itemrequest", req_id, "Request not found")
    if req["sender_id"] != str(current_user["_id"]):
        raise HTTPException(403, "Not sender")
    if req["status"] not in DELETABLE:
        raise HTTPException(409, f"Cannot delete a {req['status']} request")
    db = await get_db()
    await db["itemrequest"].delete_one({"_id": req["_id"], "status": {"$in": list(DELETABLE)}})
    return {"ok": True}
