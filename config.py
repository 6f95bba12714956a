import os

from dotenv import load_dotenv

load_dotenv()

# ---------- Runtime ----------

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
FRONTEND_ORIGINS = [o.strip() for o in os.getenv("FRONTEND_ORIGINS", "*").split(",") if o.strip()]

# ---------- Sessions ----------

ACCESS_TOKEN_HOURS = int(os.getenv("ACCESS_TOKEN_HOURS", "2"))
REFRESH_TOKEN_DAYS = int(os.getenv("REFRESH_TOKEN_DAYS", "7"))
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "true").lower() in ("1", "true", "yes")
ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

DEFAULT_MEMBER_PASSWORD = os.getenv("DEFAULT_MEMBER_PASSWORD", "User@1234")

# ---------- Widget defaults ----------

DEFAULT_SETTINGS = {
    "header_color": "#33475B",
    "background_color": "#EEEEEE",
    "customized_messages": ["How can i help you?", "Ask me anything!"],
    "form_placeholder": {
        "name": "Your name",
        "phone": "+1 (000) 000-0000",
        "email": "example@gmail.com",
        "submit_button": "Thank You!",
    },
    "welcome_message": "👋 Want to chat about Hubly? I'm a chatbot here to help you find your way.",
    "missed_chat_timer": {"hour": 1, "minute": 0, "second": 0},
}

# Retries after a ticket code collides with a concurrently created lead
TICKET_ID_MAX_ATTEMPTS = 20
