import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import ACCESS_TOKEN_HOURS, REFRESH_TOKEN_DAYS
from database import as_utc, create_document, object_id, utcnow
from errors import Conflict, InvalidInput, NotAuthenticated, SessionExpired
from schemas import Session as SessionSchema, User as UserSchema

logger = logging.getLogger(__name__)


# ---------- Helpers ----------

def hash_password(password: str, salt: Optional[str] = None) -> str:
    if salt is None:
        salt = secrets.token_hex(16)
    digest = hashlib.sha256((salt + password).encode()).hexdigest()
    return f"{salt}${digest}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        salt, digest = stored_hash.split("$")
    except ValueError:
        return False
    return secrets.compare_digest(hash_password(password, salt), stored_hash)


def find_admin(db: Database) -> Optional[dict]:
    """The root Admin of the deployment, or None before the first registration."""
    return db["user"].find_one({"user_role": "Admin"}, sort=[("created_at", 1), ("_id", 1)])


def display_name(user: Optional[dict]) -> str:
    if not user:
        return "N/A"
    return f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip() or "N/A"


def is_admin(db: Database, user: dict) -> bool:
    admin = find_admin(db)
    return admin is not None and str(admin["_id"]) == str(user["_id"])


# ---------- Registration ----------

def register(db: Database, first_name: str, last_name: str, email: str, password: str,
             confirm_password: str) -> dict:
    """
    Create a staff account.

    The first account ever registered becomes the Admin; every later one is a
    Member whose parent is that Admin.
    """
    first_name, last_name, email = (first_name or "").strip(), (last_name or "").strip(), (email or "").strip().lower()
    if not first_name or not last_name or not email or not password or not confirm_password:
        raise InvalidInput("Invalid details shared!")
    if password != confirm_password:
        raise InvalidInput("Passwords do not match!")

    users = db["user"]
    if users.find_one({"email": email}):
        raise Conflict("User already exists!")

    admin = find_admin(db)
    if admin is None:
        role, parent = "Admin", None
    else:
        role, parent = "Member", str(admin["_id"])

    user = UserSchema(first_name=first_name, last_name=last_name, email=email,
                      password_hash=hash_password(password), user_role=role, parent=parent)
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("User already exists!")

    if role == "Admin":
        # Two simultaneous first registrations: the earliest Admin keeps the role
        winner = find_admin(db)
        if winner["_id"] != user_id:
            users.update_one({"_id": user_id}, {"$set": {"user_role": "Member", "parent": str(winner["_id"])}})
        else:
            logger.info("Registered %s as the Admin", email)

    return users.find_one({"_id": user_id})


# ---------- Sessions ----------

def _issue_access_token(db: Database, user_id: str, now: datetime) -> str:
    token = secrets.token_urlsafe(32)
    session = SessionSchema(user_id=user_id, token=token, expires_at=now + timedelta(hours=ACCESS_TOKEN_HOURS))
    create_document(db, "session", session, now=now)
    return token


def login(db: Database, email: str, password: str, now: Optional[datetime] = None) -> Tuple[dict, str, str]:
    """Returns (user, access_token, refresh_token)."""
    now = now or utcnow()
    if not email or not password:
        raise NotAuthenticated("Invalid credentials")
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise NotAuthenticated("Invalid credentials, email or password is incorrect")

    user_id = str(user["_id"])
    access_token = _issue_access_token(db, user_id, now)
    refresh_token = secrets.token_urlsafe(48)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "refresh_token": refresh_token,
            "refresh_expires_at": now + timedelta(days=REFRESH_TOKEN_DAYS),
            "updated_at": now,
        }},
    )
    return user, access_token, refresh_token


def logout(db: Database, refresh_token: Optional[str]) -> None:
    if not refresh_token:
        raise InvalidInput("Something went wrong")
    user = db["user"].find_one({"refresh_token": refresh_token})
    if not user:
        raise InvalidInput("Something went wrong")
    revoke_sessions(db, user)


def revoke_sessions(db: Database, user: dict) -> None:
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"refresh_token": None, "refresh_expires_at": None}})
    db["session"].delete_many({"user_id": str(user["_id"])})


def resolve_identity(db: Database, access_token: Optional[str], refresh_token: Optional[str],
                     now: Optional[datetime] = None) -> Tuple[dict, Optional[str]]:
    """
    Map request credentials to a staff user.

    Returns (user, renewed_access_token). The second item is None unless the
    access token was missing or expired and a new one was issued from the
    refresh token. Anything that cannot be resolved raises SessionExpired.
    """
    now = now or utcnow()
    if access_token:
        session = db["session"].find_one({"token": access_token})
        if session and as_utc(session["expires_at"]) > now:
            user = db["user"].find_one({"_id": object_id(session["user_id"], "User")})
            if user:
                return user, None
            raise SessionExpired("Something went wrong, Login again!")
        if session:
            db["session"].delete_one({"_id": session["_id"]})

    if not refresh_token:
        raise SessionExpired("Something went wrong, Login again!")
    user = db["user"].find_one({"refresh_token": refresh_token})
    if not user:
        raise SessionExpired("Something went wrong, Login again!")
    expires_at = user.get("refresh_expires_at")
    if expires_at is None or as_utc(expires_at) <= now:
        revoke_sessions(db, user)
        logger.info("Refresh token expired for %s, forcing logout", user.get("email"))
        raise SessionExpired("Session expired, please log in again")

    token = _issue_access_token(db, str(user["_id"]), now)
    logger.debug("Renewed access token for %s", user.get("email"))
    return user, token
