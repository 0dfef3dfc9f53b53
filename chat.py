"""
1:1 conversations between users.

Messages are embedded in the conversation document and only ever appended;
``read`` flips from False to True and never back. Each user also carries an
``unread_messages`` counter that is updated separately from the message
writes, so it is a cache: ``get_total_unread_count`` is the authoritative
number.
"""
import logging
from typing import List

from pydantic import ValidationError

import database
from errors import NotFound, ValidationFailure, describe_errors
from schemas import Conversation, Message

logger = logging.getLogger(__name__)

COLLECTION = "conversation"
USERS = "user"
PARTICIPANT_FIELDS = ("name", "profile_picture")


def _new_message(sender: str, content: str, timestamp) -> dict:
    try:
        message = Message(sender=sender, content=(content or "").strip(), timestamp=timestamp)
    except ValidationError as exc:
        raise ValidationFailure("Invalid message", describe_errors(exc.errors())) from exc
    return message.model_dump()


def _load(conversation_id: str) -> dict:
    conv = database.collection(COLLECTION).find_one(
        {"_id": database.object_id(conversation_id, "conversation id")}
    )
    if not conv:
        raise NotFound("Conversation not found")
    return conv


def _require_user(user_id: str):
    oid = database.object_id(user_id, "user id")
    if database.collection(USERS).count_documents({"_id": oid}, limit=1) == 0:
        raise NotFound("User not found")
    return oid


def _bump_unread(user_id: str, amount: int) -> None:
    users = database.collection(USERS)
    oid = database.object_id(user_id, "user id")
    if amount >= 0:
        users.update_one({"_id": oid}, {"$inc": {"unread_messages": amount}})
        return
    # each write is guarded so the counter is never seen below zero
    result = users.update_one(
        {"_id": oid, "unread_messages": {"$gte": -amount}},
        {"$inc": {"unread_messages": amount}},
    )
    if result.matched_count == 0:
        users.update_one(
            {"_id": oid, "unread_messages": {"$lt": -amount}},
            {"$set": {"unread_messages": 0}},
        )


def unread_count(conversation: dict, user_id: str) -> int:
    """Messages in ``conversation`` written by someone else and not yet read."""
    return sum(
        1 for m in conversation.get("messages", [])
        if m["sender"] != user_id and not m.get("read")
    )


def start_conversation(user_a: str, user_b: str, content: str) -> dict:
    if user_a == user_b:
        raise ValidationFailure("Cannot start conversation with self")
    _require_user(user_a)
    _require_user(user_b)

    existing = database.collection(COLLECTION).find_one({"participants": {"$all": [user_a, user_b]}})
    if existing:
        return send_message(str(existing["_id"]), user_a, content)

    now = database.utcnow()
    message = _new_message(user_a, content, now)
    conv_id = database.create_document(
        COLLECTION, Conversation(participants=[user_a, user_b], messages=[message], last_message=now)
    )

    database.collection(USERS).update_many(
        {"_id": {"$in": [database.object_id(user_a), database.object_id(user_b)]}},
        {"$push": {"conversations": conv_id}},
    )
    _bump_unread(user_b, 1)
    logger.info("Conversation %s started by %s with %s", conv_id, user_a, user_b)
    return database.serialize(_load(conv_id))


def send_message(conversation_id: str, sender_id: str, content: str) -> dict:
    conv = _load(conversation_id)
    if sender_id not in conv["participants"]:
        raise ValidationFailure("Sender is not a participant in this conversation")

    # never earlier than the previous append
    timestamp = max(database.utcnow(), conv["last_message"])
    message = _new_message(sender_id, content, timestamp)
    database.collection(COLLECTION).update_one(
        {"_id": conv["_id"]},
        {
            "$push": {"messages": message},
            "$max": {"last_message": timestamp},
            "$set": {"updated_at": database.utcnow()},
        },
    )

    recipient = next(p for p in conv["participants"] if p != sender_id)
    _bump_unread(recipient, 1)
    logger.info("Message from %s in conversation %s", sender_id, conversation_id)
    return database.serialize(_load(conversation_id))


def mark_messages_as_read(conversation_id: str, reader_id: str) -> int:
    """Mark every unread message from the other participant as read.

    Returns how many messages changed state; the reader's counter is lowered
    by exactly that amount.
    """
    conv = _load(conversation_id)
    if reader_id not in conv["participants"]:
        raise ValidationFailure("Reader is not a participant in this conversation")

    now = database.utcnow()
    changes = {}
    for index, message in enumerate(conv["messages"]):
        if message["sender"] == reader_id or message.get("read"):
            continue
        # positions are stable because messages are append-only
        changes[f"messages.{index}.read"] = True
        changes[f"messages.{index}.read_by"] = message.get("read_by", []) + [
            {"user_id": reader_id, "read_at": now}
        ]

    cleared = len(changes) // 2
    if not cleared:
        logger.debug("Nothing to mark read in %s for %s", conversation_id, reader_id)
        return 0

    database.collection(COLLECTION).update_one({"_id": conv["_id"]}, {"$set": changes})
    _bump_unread(reader_id, -cleared)
    logger.debug("Marked %d messages read in %s for %s", cleared, conversation_id, reader_id)
    return cleared


def get_total_unread_count(user_id: str) -> int:
    _require_user(user_id)
    conversations = database.collection(COLLECTION).find({"participants": user_id}, {"messages": 1})
    return sum(unread_count(conv, user_id) for conv in conversations)


def get_conversations(user_id: str) -> List[dict]:
    _require_user(user_id)
    convs = list(
        database.collection(COLLECTION).find({"participants": user_id}).sort("last_message", -1)
    )
    ids = {p for c in convs for p in c["participants"]}
    people = database.fetch_projections(USERS, ids, PARTICIPANT_FIELDS)

    out = []
    for conv in convs:
        item = database.serialize(conv)
        item["participants"] = [people.get(p, {"id": p}) for p in conv["participants"]]
        item["unread_count"] = unread_count(conv, user_id)
        out.append(item)
    return out


def get_messages(conversation_id: str) -> List[dict]:
    conv = _load(conversation_id)
    senders = database.fetch_projections(USERS, {m["sender"] for m in conv["messages"]}, PARTICIPANT_FIELDS)
    return [
        dict(m, sender=senders.get(m["sender"], {"id": m["sender"]}))
        for m in conv["messages"]
    ]
