"""
Staff management.

Deleting a member never cascades into leads: their work is handed back to
the Admin so every lead keeps a valid current assignee and every
conversation turn keeps a valid author.
"""

import logging
from typing import List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import display_name, find_admin, hash_password, is_admin, revoke_sessions
from config import DEFAULT_MEMBER_PASSWORD
from database import create_document, object_id, utcnow
from errors import Conflict, Forbidden, InvalidInput, NoAdminConfigured, NotFound
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

HAND_BACK_ATTEMPTS = 5


def _get_member(db: Database, member_id) -> dict:
    member = db["user"].find_one({"_id": object_id(member_id, "Member")})
    if not member:
        raise NotFound("Member not found!")
    return member


def list_members(db: Database) -> List[dict]:
    return [
        {
            "userId": str(u["_id"]),
            "userName": display_name(u),
            "userPhone": u.get("contact") or "N/A",
            "userEmail": u.get("email") or "N/A",
            "userRole": u.get("user_role"),
        }
        for u in db["user"].find({}).sort([("created_at", 1), ("_id", 1)])
    ]


def get_member(db: Database, member_id) -> dict:
    member = _get_member(db, member_id)
    return {
        "userID": str(member["_id"]),
        "firstName": member.get("first_name") or "N/a",
        "lastName": member.get("last_name") or "N/a",
        "email": member.get("email") or "N/a",
        "phone": member.get("contact"),
        "userRole": member.get("user_role"),
        "password": "",
        "confirmPassword": "",
    }


def create_member(db: Database, requesting_user: dict, name: str, email: str) -> str:
    """The Admin adds a staff member, who signs in with the default password."""
    name, email = (name or "").strip(), (email or "").strip().lower()
    if not name or not email:
        raise InvalidInput("Invalid details shared!")

    admin = find_admin(db)
    if admin is None:
        raise NoAdminConfigured()
    if str(admin["_id"]) != str(requesting_user["_id"]):
        raise Forbidden("Only admin can add members!")
    if db["user"].find_one({"email": email}):
        raise Conflict("User with this email already exists!")

    first_name, _, last_name = name.partition(" ")
    user = UserSchema(
        first_name=first_name,
        last_name=last_name.strip(),
        email=email,
        password_hash=hash_password(DEFAULT_MEMBER_PASSWORD),
        user_role="Member",
        parent=str(admin["_id"]),
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("User with this email already exists!")
    logger.info("Admin created member %s", email)
    return str(user_id)


def update_member(db: Database, requesting_user: dict, member_id, first_name: str, last_name: str,
                  email: str, phone: str, password: Optional[str] = None,
                  confirm_password: Optional[str] = None) -> bool:
    """
    Update a staff profile.

    Returns True when the change invalidates the member's sessions (new
    e-mail, phone or password) and the client has to sign in again.
    """
    first_name, last_name = (first_name or "").strip(), (last_name or "").strip()
    email, phone = (email or "").strip().lower(), (phone or "").strip()
    if not first_name or not last_name or not email or not phone:
        raise InvalidInput("Invalid fields")
    if password and password != confirm_password:
        raise InvalidInput("Password does not match")

    member = _get_member(db, member_id)
    if str(member["_id"]) != str(requesting_user["_id"]) and not is_admin(db, requesting_user):
        raise Forbidden("Only admin can update other members!")

    if member.get("email") != email:
        if db["user"].find_one({"email": email, "_id": {"$ne": member["_id"]}}):
            raise Conflict("Email already in use")

    changes = {"first_name": first_name, "last_name": last_name, "email": email,
               "contact": phone, "updated_at": utcnow()}
    if password:
        changes["password_hash"] = hash_password(password)
    db["user"].update_one({"_id": member["_id"]}, {"$set": changes})

    logout_required = bool(password) or member.get("email") != email or member.get("contact") != phone
    if logout_required:
        revoke_sessions(db, member)
    return logout_required


def _hand_back(history: List[str], current: Optional[str], member_ref: str, admin_ref: str):
    """Replace the member by the Admin in a lead's assignment, keeping the Admin listed once."""
    new_history = []
    for ref in history:
        ref = admin_ref if ref == member_ref else ref
        if ref == admin_ref and admin_ref in new_history:
            continue
        new_history.append(ref)
    if current == member_ref:
        current = admin_ref
    if current and current not in new_history:
        new_history.insert(0, current)
    return new_history, current


def _hand_back_lead(db: Database, lead_id, member_ref: str, admin_ref: str, now) -> None:
    # Compare-and-set against the assignment that was read, as reassign does
    for _ in range(HAND_BACK_ATTEMPTS):
        lead = db["lead"].find_one({"_id": lead_id})
        if lead is None:
            return
        history = lead.get("assignee_list") or []
        current = lead.get("current_assignee")
        if member_ref not in history and current != member_ref:
            return
        new_history, new_current = _hand_back(history, current, member_ref, admin_ref)
        res = db["lead"].update_one(
            {"_id": lead_id, "assignee_list": history, "current_assignee": current},
            {"$set": {"current_assignee": new_current, "assignee_list": new_history, "updated_at": now}},
        )
        if res.matched_count:
            return
    raise Conflict("Lead is being reassigned by someone else, try again!")


def delete_member(db: Database, requesting_user: dict, member_id) -> None:
    """
    Remove a member and hand everything they owned back to the Admin.

    The Admin replaces the member as current assignee and takes the
    member's place in each lead's assignee history (listed once). The
    member's conversation turns are re-attributed to the Admin.
    """
    member = _get_member(db, member_id)
    if member.get("user_role") == "Admin":
        raise Forbidden("Only members can be deleted!")

    admin = find_admin(db)
    if admin is None:
        raise NoAdminConfigured()
    if str(admin["_id"]) != str(requesting_user["_id"]):
        raise Forbidden("Only admin can delete member!")

    member_ref, admin_ref = str(member["_id"]), str(admin["_id"])
    now = utcnow()
    lead_ids = [
        lead["_id"]
        for lead in db["lead"].find({"$or": [{"current_assignee": member_ref}, {"assignee_list": member_ref}]},
                                    {"_id": 1})
    ]
    for lead_id in lead_ids:
        _hand_back_lead(db, lead_id, member_ref, admin_ref, now)

    turns = db["conversation"].update_many({"assignee_id": member_ref}, {"$set": {"assignee_id": admin_ref}})
    db["session"].delete_many({"user_id": member_ref})
    db["user"].delete_one({"_id": member["_id"]})
    logger.info("Deleted member %s, reassigned %d lead(s) and %d turn(s) to the Admin",
                member.get("email"), len(lead_ids), turns.modified_count)
