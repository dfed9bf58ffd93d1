import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import FRONTEND_URL, LOG_LEVEL, PORT
from database import get_db, close_db
import assistant
import auth
import chat
import community
import item_requests
import items
import notifications
import users

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Waste to Wish API")

# CORS
origins = [
    FRONTEND_URL,
    "*",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(items.router)
app.include_router(item_requests.router)
app.include_router(chat.router)
app.include_router(notifications.router)
app.include_router(community.router)
app.include_router(assistant.router)


@app.on_event("shutdown")
async def shutdown_db_client():
    close_db()


@app.get("/")
async def root():
    return {"message": "Waste to Wish API is running"}


@app.get("/test")
async def test_connection():
    db = await get_db()
    # A simple ping to ensure we can talk to the database
    await db.command("ping")
    return {"ok": True, "message": "Database connected"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
