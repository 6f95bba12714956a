"""
Lead / ticket lifecycle.

A lead is created by an anonymous visitor's first chat message and is
assigned to the Admin. From then on:

- `status` flips freely between Unresolved and Resolved, but only the
  current assignee may flip it.
- `response_time` goes from 0 to the seconds elapsed until the first staff
  reply, exactly once.
- `is_missed_chat` goes from False to True once the configured missed-chat
  timer has elapsed, and never back.
- `assignee_list` keeps every hand-off, most recent first, and always
  contains `current_assignee`.

Every function takes the database handle first and an optional `now` so the
time-based rules can be driven deterministically.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import display_name, find_admin, is_admin
from database import as_utc, create_document, object_id, utcnow
from errors import Conflict, Forbidden, InvalidInput, NoAdminConfigured, NotFound
from schemas import LEAD_STATUSES, Conversation, Lead, Sender
from sequencer import insert_with_ticket_id
from settings_store import missed_chat_threshold

logger = logging.getLogger(__name__)

NO_MESSAGE = "No message"
REASSIGN_ATTEMPTS = 5


# ---------- Helpers ----------

def _get_lead(db: Database, lead_id) -> dict:
    lead = db["lead"].find_one({"_id": object_id(lead_id, "Lead")})
    if not lead:
        raise NotFound("Lead not found!")
    return lead


def _require_current_assignee(lead: dict, user: dict, action: str) -> None:
    if str(lead.get("current_assignee")) != str(user["_id"]):
        raise Forbidden(f"Only current assignee can {action}!")


def _require_admin(db: Database, user: dict, action: str) -> dict:
    admin = find_admin(db)
    if admin is None:
        raise NoAdminConfigured()
    if str(admin["_id"]) != str(user["_id"]):
        raise Forbidden(f"Only admin can {action}!")
    return admin


def _clean(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


def _append_turn(db: Database, lead_id: str, message: str, sender: Sender, now: datetime,
                 idempotency_key: Optional[str] = None):
    turn = Conversation(lead_id=lead_id, message=message, send_by=sender.kind,
                        assignee_id=sender.staff_id, idempotency_key=idempotency_key).model_dump()
    # only keyed turns enter the partial unique index
    if not idempotency_key:
        turn.pop("idempotency_key")
    return create_document(db, "conversation", turn, now=now)


def _find_turn_by_key(db: Database, lead_id: str, idempotency_key: str) -> Optional[dict]:
    return db["conversation"].find_one({"lead_id": lead_id, "idempotency_key": idempotency_key})


def latest_visitor_message(db: Database, lead_id: str) -> str:
    turn = db["conversation"].find_one(
        {"lead_id": lead_id, "send_by": "Lead"},
        sort=[("created_at", -1), ("_id", -1)],
    )
    return turn["message"] if turn else NO_MESSAGE


def _users_by_id(db: Database, ids) -> dict:
    oids = [object_id(i, "User") for i in {i for i in ids if i}]
    if not oids:
        return {}
    return {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": oids}})}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


# ---------- Visitor side ----------

def create_lead(db: Database, message: str, now: Optional[datetime] = None) -> str:
    """Open a ticket from a visitor's first message and hand it to the Admin."""
    now = now or utcnow()
    message = _clean(message)
    if not message:
        raise InvalidInput("Invalid details shared!")

    admin = find_admin(db)
    if admin is None:
        raise NoAdminConfigured()
    admin_id = str(admin["_id"])

    lead = Lead(
        ticket_id="",
        current_assignee=admin_id,
        assignee_list=[admin_id],
        is_first_message_shared=True,
        is_details_shared=False,
    ).model_dump()
    lead.update({"created_at": now, "updated_at": now})
    lead_id = insert_with_ticket_id(db, lead, now)

    _append_turn(db, str(lead_id), message, Sender(kind="Lead"), now)
    logger.info("Lead %s created", lead_id)
    return str(lead_id)


def submit_lead_form(db: Database, lead_id, name: str, email: str, phone: str,
                     now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    name, email, phone = _clean(name), _clean(email), _clean(phone)
    if not lead_id or not name or not email or not phone:
        raise InvalidInput("Invalid details shared!")

    lead = _get_lead(db, lead_id)
    db["lead"].update_one(
        {"_id": lead["_id"]},
        {"$set": {
            "user_name": name,
            "user_email": email,
            "user_phone": phone,
            "is_details_shared": True,
            "updated_at": now,
        }},
    )


def post_visitor_message(db: Database, lead_id, message: str, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    message = _clean(message)
    if not lead_id or not message:
        raise InvalidInput("Invalid details shared!")
    lead = _get_lead(db, lead_id)
    return str(_append_turn(db, str(lead["_id"]), message, Sender(kind="Lead"), now))


def get_lead_detail(db: Database, lead_id) -> dict:
    """What the chat widget needs to restore a visitor's session."""
    lead = _get_lead(db, lead_id)
    turns = db["conversation"].find({"lead_id": str(lead["_id"])}).sort([("created_at", 1), ("_id", 1)])
    return {
        "leadID": str(lead["_id"]),
        "ticketID": lead["ticket_id"],
        "userName": lead.get("user_name"),
        "userPhone": lead.get("user_phone"),
        "userEmail": lead.get("user_email"),
        "isFirstMessageShared": lead.get("is_first_message_shared", False),
        "detailsShared": lead.get("is_details_shared", False),
        "status": lead.get("status"),
        "conversation": [
            {"id": str(t["_id"]), "message": t["message"], "sendBy": t["send_by"]}
            for t in turns
        ],
    }


# ---------- Staff side ----------

def post_staff_message(db: Database, lead_id, staff_user: dict, message: str,
                       now: Optional[datetime] = None, idempotency_key: Optional[str] = None) -> str:
    """
    Reply to a visitor as the lead's current assignee.

    Stamps the response time on the first reply and flags the lead as a
    missed chat when the reply comes later than the missed-chat timer.
    Replaying an already stored `idempotency_key` returns the stored turn
    and writes nothing.
    """
    now = now or utcnow()
    message = _clean(message)
    if not lead_id or not message:
        raise InvalidInput("Please share all details")

    lead = _get_lead(db, lead_id)
    _require_current_assignee(lead, staff_user, "send the message")
    lead_ref = str(lead["_id"])

    if idempotency_key:
        existing = _find_turn_by_key(db, lead_ref, idempotency_key)
        if existing:
            return str(existing["_id"])

    elapsed = (now - as_utc(lead["created_at"])).total_seconds()
    threshold = missed_chat_threshold(db)
    leads = db["lead"]

    if lead.get("response_time", 0) == 0:
        # 0 means "never replied", so a sub-second reply still counts as 1s
        response_time = max(1, math.floor(elapsed))
        leads.update_one(
            {"_id": lead["_id"], "response_time": 0},
            {"$set": {"response_time": response_time, "updated_at": now}},
        )

    if threshold > 0 and elapsed > threshold and not lead.get("is_missed_chat"):
        leads.update_one({"_id": lead["_id"]}, {"$set": {"is_missed_chat": True, "updated_at": now}})
        logger.info("Lead %s replied after %ss, marked as missed chat", lead["ticket_id"], int(elapsed))

    sender = Sender(kind="Member", staff_id=str(staff_user["_id"]))
    try:
        return str(_append_turn(db, lead_ref, message, sender, now, idempotency_key))
    except DuplicateKeyError:
        # a concurrent retry with the same key stored its turn first
        existing = _find_turn_by_key(db, lead_ref, idempotency_key) if idempotency_key else None
        if existing is None:
            raise
        return str(existing["_id"])


def update_status(db: Database, lead_id, staff_user: dict, status: str, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    if not lead_id or status not in LEAD_STATUSES:
        raise InvalidInput("Please share all details")
    lead = _get_lead(db, lead_id)
    _require_current_assignee(lead, staff_user, "update the status")
    db["lead"].update_one({"_id": lead["_id"]}, {"$set": {"status": status, "updated_at": now}})


def reassign(db: Database, lead_id, requesting_user: dict, new_assignee_id,
             now: Optional[datetime] = None) -> None:
    """Hand a lead to another staff member. Re-assigning someone again adds a new history entry."""
    now = now or utcnow()
    if not lead_id or not new_assignee_id:
        raise InvalidInput("Please share all details")
    _require_admin(db, requesting_user, "update the assignee")

    assignee = db["user"].find_one({"_id": object_id(new_assignee_id, "Assignee")})
    if not assignee:
        raise NotFound("Assignee not found!")
    assignee_id = str(assignee["_id"])

    # Compare-and-set on the history so concurrent hand-offs are not lost
    for _ in range(REASSIGN_ATTEMPTS):
        lead = _get_lead(db, lead_id)
        history = lead.get("assignee_list") or []
        res = db["lead"].update_one(
            {"_id": lead["_id"], "assignee_list": history},
            {"$set": {
                "current_assignee": assignee_id,
                "assignee_list": [assignee_id] + history,
                "updated_at": now,
            }},
        )
        if res.matched_count:
            logger.info("Lead %s reassigned to %s", lead["ticket_id"], assignee.get("email"))
            return
    raise Conflict("Lead is being reassigned by someone else, try again!")


def sweep_missed_chats(db: Database, now: Optional[datetime] = None) -> int:
    """Flag every unanswered lead older than the missed-chat timer. Returns how many were flagged."""
    now = now or utcnow()
    threshold = missed_chat_threshold(db)
    if threshold <= 0:
        return 0

    cutoff = now - timedelta(seconds=threshold)
    overdue = [
        lead["_id"]
        for lead in db["lead"].find({"response_time": 0, "is_missed_chat": False}, {"created_at": 1})
        if as_utc(lead["created_at"]) < cutoff
    ]
    if not overdue:
        return 0

    res = db["lead"].update_many(
        {"_id": {"$in": overdue}, "response_time": 0, "is_missed_chat": False},
        {"$set": {"is_missed_chat": True, "updated_at": now}},
    )
    if res.modified_count:
        logger.info("Flagged %d lead(s) as missed chats", res.modified_count)
    return res.modified_count


def list_tickets(db: Database, page: int = 1, limit: int = 10, status: str = "All") -> dict:
    if page < 1 or limit < 1:
        raise InvalidInput("Invalid page or limit")
    if status != "All" and status not in LEAD_STATUSES:
        raise InvalidInput("Invalid status filter")

    query = {} if status == "All" else {"status": status}
    total = db["lead"].count_documents(query)
    leads = (
        db["lead"].find(query)
        .sort([("created_at", -1), ("_id", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )

    leads_list = []
    for lead in leads:
        leads_list.append({
            "leadID": str(lead["_id"]),
            "ticketID": lead["ticket_id"],
            "latestMessage": latest_visitor_message(db, str(lead["_id"])),
            "postedAt": _iso(lead.get("created_at")),
            "senderDetails": {
                "name": lead.get("user_name") or "N/A",
                "email": lead.get("user_email") or "N/A",
                "phone": lead.get("user_phone") or "N/A",
            },
            "status": lead["status"],
        })

    return {
        "totalLeads": total,
        "totalPages": math.ceil(total / limit),
        "currentPage": page,
        "limit": limit,
        "leadsList": leads_list,
    }


def list_assigned_leads(db: Database, user: dict, now: Optional[datetime] = None) -> List[dict]:
    """The staff inbox: every lead for the Admin, otherwise leads the user was ever assigned to."""
    sweep_missed_chats(db, now)

    user_id = str(user["_id"])
    query = {} if is_admin(db, user) else {"assignee_list": user_id}
    leads = list(db["lead"].find(query).sort([("created_at", 1), ("_id", 1)]))

    staff_ids = set()
    for lead in leads:
        staff_ids.add(lead.get("current_assignee"))
        staff_ids.update(lead.get("assignee_list") or [])
    staff = _users_by_id(db, staff_ids)

    result = []
    for lead in leads:
        current = lead.get("current_assignee")
        result.append({
            "leadID": str(lead["_id"]),
            "ticketID": lead["ticket_id"],
            "latestMessage": latest_visitor_message(db, str(lead["_id"])),
            "userName": lead.get("user_name"),
            "userPhone": lead.get("user_phone"),
            "userEmail": lead.get("user_email"),
            "status": lead["status"],
            "isMissedChat": lead.get("is_missed_chat", False),
            "isCurrentAssignee": current == user_id,
            "assigneeName": display_name(staff.get(current)),
            "postedAt": _iso(lead.get("created_at")),
            "assigneeList": [
                {"userID": sid, "userName": display_name(staff.get(sid))}
                for sid in lead.get("assignee_list") or []
            ],
        })
    return result


def list_assignee_candidates(db: Database, lead_id) -> List[dict]:
    lead = _get_lead(db, lead_id)
    query = {}
    if lead.get("current_assignee"):
        query = {"_id": {"$ne": object_id(lead["current_assignee"], "User")}}
    return [
        {"userID": str(u["_id"]), "userName": display_name(u)}
        for u in db["user"].find(query).sort([("created_at", 1), ("_id", 1)])
    ]


def get_conversation(db: Database, lead_id) -> List[dict]:
    """Conversation turns with the display name of whoever wrote them."""
    lead = _get_lead(db, lead_id)
    turns = list(db["conversation"].find({"lead_id": str(lead["_id"])}).sort([("created_at", 1), ("_id", 1)]))
    staff = _users_by_id(db, [t.get("assignee_id") for t in turns])

    result = []
    for turn in turns:
        sender = Sender.of(turn)
        if sender.kind == "Lead":
            sender_name = "Lead"
        else:
            sender_name = (staff.get(sender.staff_id) or {}).get("first_name") or "N/A"
        result.append({
            "id": str(turn["_id"]),
            "message": turn["message"],
            "sendBy": sender.kind,
            "sender": {"kind": sender.kind, "staffID": sender.staff_id},
            "senderName": sender_name,
            "postedAt": _iso(turn.get("created_at")),
        })
    return result


def delete_lead(db: Database, lead_id, requesting_user: dict) -> None:
    """Remove a lead together with its whole conversation."""
    _require_admin(db, requesting_user, "delete a lead")
    lead = _get_lead(db, lead_id)
    removed = db["conversation"].delete_many({"lead_id": str(lead["_id"])}).deleted_count
    db["lead"].delete_one({"_id": lead["_id"]})
    logger.info("Deleted lead %s and %d conversation turn(s)", lead["ticket_id"], removed)
