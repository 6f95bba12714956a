import logging
from typing import Optional

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from config import DEFAULT_SETTINGS
from database import utcnow
from errors import InvalidInput, NotFound
from schemas import ChatbotSettings, MissedChatTimer

logger = logging.getLogger(__name__)

COLLECTION = "chatbotsettings"


def ensure_default_settings(db: Database) -> bool:
    """Seed the settings singleton if it does not exist yet. Returns True when seeded."""
    doc = ChatbotSettings(**DEFAULT_SETTINGS).model_dump()
    stamp = utcnow()
    res = db[COLLECTION].update_one(
        {},
        {"$setOnInsert": {**doc, "created_at": stamp, "updated_at": stamp}},
        upsert=True,
    )
    if res.upserted_id is not None:
        logger.info("Default chatbot settings created")
        return True
    return False


def get_settings(db: Database) -> Optional[dict]:
    return db[COLLECTION].find_one({})


def missed_chat_threshold(db: Database) -> int:
    """Missed-chat SLA in seconds; 0 disables missed-chat detection."""
    settings = get_settings(db)
    if not settings:
        raise NotFound("Chatbot settings not found!")
    timer = settings.get("missed_chat_timer") or {}
    return MissedChatTimer(
        hour=timer.get("hour") or 0,
        minute=timer.get("minute") or 0,
        second=timer.get("second") or 0,
    ).total_seconds


def read_settings(db: Database) -> dict:
    settings = get_settings(db)
    if not settings:
        ensure_default_settings(db)
        settings = get_settings(db)
    return public_view(settings)


def public_view(settings: dict) -> dict:
    placeholder = settings.get("form_placeholder") or {}
    timer = settings.get("missed_chat_timer") or {}
    return {
        "headerColor": settings.get("header_color"),
        "backgroundColor": settings.get("background_color"),
        "customizedMessages": settings.get("customized_messages") or [],
        "formPlaceholder": {
            "name": placeholder.get("name"),
            "email": placeholder.get("email"),
            "phone": placeholder.get("phone"),
            "submitButton": placeholder.get("submit_button"),
        },
        "welcomeMessage": settings.get("welcome_message"),
        "missedChatTimer": {
            "hour": timer.get("hour", 0),
            "minute": timer.get("minute", 0),
            "second": timer.get("second", 0),
        },
    }


def update_settings(db: Database, values: dict) -> dict:
    """Replace the widget settings. `values` uses the stored (snake_case) field names."""
    try:
        settings = ChatbotSettings(**values)
    except ValidationError:
        raise InvalidInput("Please share all details")
    if not settings.customized_messages or not settings.welcome_message.strip():
        raise InvalidInput("Please share all details")

    ensure_default_settings(db)
    updated = db[COLLECTION].find_one_and_update(
        {},
        {"$set": {**settings.model_dump(), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Chatbot settings updated, missed chat timer %ss", settings.missed_chat_timer.total_seconds)
    return public_view(updated)
