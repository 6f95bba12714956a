"""
Daily ticket codes: `YYYY-MMDD`, then `YYYY-MMDD-01`, `YYYY-MMDD-02`, ...

Every issued code is claimed in the `ticketcode` collection, keyed by the
code itself. The existence probe alone races with concurrent lead intake;
the claim insert and the unique index on `lead.ticket_id` are what make a
code unique, and a lost race simply moves on to the next candidate. Claims
outlive their leads so codes are never handed out twice.
"""

import itertools
import logging
from datetime import datetime
from typing import Iterator, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import TICKET_ID_MAX_ATTEMPTS
from database import utcnow

logger = logging.getLogger(__name__)

COLLECTION = "ticketcode"


def base_ticket_id(now: datetime) -> str:
    return f"{now.year}-{now.month:02d}{now.day:02d}"


def candidate_ticket_ids(now: datetime) -> Iterator[str]:
    base = base_ticket_id(now)
    yield base
    for count in itertools.count(1):
        yield f"{base}-{count:02d}"


def _is_taken(db: Database, ticket_id: str) -> bool:
    return (db[COLLECTION].find_one({"_id": ticket_id}) is not None
            or db["lead"].find_one({"ticket_id": ticket_id}, {"_id": 1}) is not None)


def next_ticket_id(db: Database, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    for ticket_id in candidate_ticket_ids(now):
        if not _is_taken(db, ticket_id):
            return ticket_id


def claim_ticket_id(db: Database, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    for attempt in range(1, TICKET_ID_MAX_ATTEMPTS + 1):
        ticket_id = next_ticket_id(db, now)
        try:
            db[COLLECTION].insert_one({"_id": ticket_id, "claimed_at": now})
            return ticket_id
        except DuplicateKeyError:
            if attempt == TICKET_ID_MAX_ATTEMPTS:
                raise
            logger.warning("Ticket code %s taken concurrently, resequencing (attempt %d)", ticket_id, attempt)


def insert_with_ticket_id(db: Database, doc: dict, now: Optional[datetime] = None) -> ObjectId:
    """Insert a lead document under a freshly claimed ticket code."""
    for attempt in range(1, TICKET_ID_MAX_ATTEMPTS + 1):
        ticket_id = claim_ticket_id(db, now)
        try:
            return db["lead"].insert_one({**doc, "ticket_id": ticket_id}).inserted_id
        except DuplicateKeyError:
            if attempt == TICKET_ID_MAX_ATTEMPTS:
                raise
            logger.warning("Lead with ticket code %s already exists, resequencing (attempt %d)", ticket_id, attempt)
