import logging
from typing import List

from fastapi import APIRouter, Depends, Form, HTTPException
from google import genai
from google.genai import errors as genai_errors

from auth import get_user_from_token
from config import GEMINI_API_KEY, GEMINI_MODEL
from database import get_db, create_document, get_documents, map_doc
from schemas import AI_ASSISTANT_ID, Message, to_document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistant", tags=["assistant"])

SYSTEM_PROMPT = (
    "You are a helpful and friendly AI assistant for a community platform where people donate "
    "and request items. Please provide helpful responses to user queries while being concise "
    "and friendly.\n\n"
)
WELCOME = "Hello! I'm your AI assistant. How can I help you today with your donations or requests?"

UNAVAILABLE = "I'm sorry, but the AI assistant is currently unavailable. Please try again later."
MISCONFIGURED = "I'm sorry, but the AI assistant is not properly configured. Please contact the administrator."
FAILED = "I'm sorry, I encountered an error while processing your request. Please try again."
EMPTY = "I'm not sure how to respond to that. Could you ask me something else?"

_client = None


def get_client():
    global _client
    if _client is None and GEMINI_API_KEY:
        _client = genai.Client(api_key=GEMINI_API_KEY)
    return _client


def build_prompt(history: List[dict], user_message: str) -> str:
    prompt = SYSTEM_PROMPT
    for message in history:
        role = "AI" if message["sender_id"] == AI_ASSISTANT_ID else "User"
        prompt += f"{role}: {message['text']}\n"
    prompt += f"User: {user_message}\nAI:"
    return prompt


async def generate_chat_response(history: List[dict], user_message: str) -> str:
    client = get_client()
    if client is None:
        logger.warning("GEMINI_API_KEY is not set, assistant unavailable")
        return UNAVAILABLE
    try:
        response = await client.aio.models.generate_content(model=GEMINI_MODEL, contents=build_prompt(history, user_message))
    except genai_errors.APIError as e:
        logger.error("Error generating AI response: %s", e)
        if "API_KEY" in str(e):
            return MISCONFIGURED
        return FAILED
    except Exception:
        logger.exception("Error reaching the AI model")
        return FAILED
    text = (response.text or "").strip()
    return text or EMPTY


async def history_for(user_id: str):
    docs = await get_documents("message", {"conversation_id": AI_ASSISTANT_ID, "owner_id": user_id}, sort_dir=1)
    return [map_doc(d) for d in docs]


async def save_message(user_id: str, sender_id: str, sender_name: str, text: str) -> dict:
    msg = Message(conversation_id=AI_ASSISTANT_ID, sender_id=sender_id, sender_name=sender_name, text=text, owner_id=user_id)
    return map_doc(await create_document("message", to_document(msg)))


@router.get("/messages")
async def get_assistant_messages(current_user: dict = Depends(get_user_from_token)):
    user_id = str(current_user["_id"])
    history = await history_for(user_id)
    if not history:
        history = [await save_message(user_id, AI_ASSISTANT_ID, "AI Assistant", WELCOME)]
    return history


@router.post("/messages")
async def send_assistant_message(text: str = Form(...), current_user: dict = Depends(get_user_from_token)):
    if not text.strip():
        raise HTTPException(400, "Message cannot be empty")
    user_id = str(current_user["_id"])
    history = await history_for(user_id)
    user_message = await save_message(user_id, user_id, current_user["name"], text)
    reply_text = await generate_chat_response(history, text)
    reply = await save_message(user_id, AI_ASSISTANT_ID, "AI Assistant", reply_text)
    return {"user_message": user_message, "reply": reply}


@router.delete("/messages")
async def clear_assistant_messages(current_user: dict = Depends(get_user_from_token)):
    db = await get_db()
    res = await db["message"].delete_many({"conversation_id": AI_ASSISTANT_ID, "owner_id": str(current_user["_id"])})
    return {"ok": True, "deleted": res.deleted_count}
