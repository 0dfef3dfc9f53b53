from datetime import datetime, timedelta

import pytest
from bson import ObjectId

import chat
import database
from errors import NotFound, ValidationFailure


def counter(mongo, user_id):
    return mongo["user"].find_one({"_id": ObjectId(user_id)})["unread_messages"]


def messages(mongo, conv_id):
    return mongo["conversation"].find_one({"_id": ObjectId(conv_id)})["messages"]


@pytest.fixture
def pair(make_user):
    return make_user("Ayesha"), make_user("Bilal")


def test_hello_hi_read_scenario(mongo, pair):
    one, two = pair

    conv = chat.start_conversation(one, two, "hello")
    assert len(conv["messages"]) == 1
    assert conv["participants"] == [one, two]
    assert counter(mongo, two) == 1
    assert counter(mongo, one) == 0
    assert chat.get_total_unread_count(two) == 1
    assert chat.get_total_unread_count(one) == 0

    conv = chat.send_message(conv["id"], two, "hi")
    assert [m["content"] for m in conv["messages"]] == ["hello", "hi"]
    assert counter(mongo, one) == 1
    assert chat.get_total_unread_count(one) == 1

    assert chat.mark_messages_as_read(conv["id"], one) == 1
    hello, hi = messages(mongo, conv["id"])
    assert counter(mongo, one) == 0
    assert chat.get_total_unread_count(one) == 0
    assert hi["read"] is True
    assert [r["user_id"] for r in hi["read_by"]] == [one]
    assert hello["read"] is False
    assert hello["read_by"] == []
    # user two's view is untouched
    assert chat.get_total_unread_count(two) == 1


def test_start_registers_conversation_on_both_users(mongo, pair):
    one, two = pair

    conv = chat.start_conversation(one, two, "salam")

    for user in pair:
        assert mongo["user"].find_one({"_id": ObjectId(user)})["conversations"] == [conv["id"]]


def test_start_reuses_existing_conversation_for_the_pair(mongo, pair):
    one, two = pair
    first = chat.start_conversation(one, two, "hello")

    again = chat.start_conversation(two, one, "hello back")

    assert again["id"] == first["id"]
    assert len(again["messages"]) == 2
    assert mongo["conversation"].count_documents({}) == 1
    assert counter(mongo, one) == 1


def test_start_rejects_self_and_unknown_users(mongo, pair, missing_id):
    one, _ = pair

    with pytest.raises(ValidationFailure):
        chat.start_conversation(one, one, "talking to myself")
    with pytest.raises(NotFound):
        chat.start_conversation(one, missing_id, "anyone there?")
    with pytest.raises(ValidationFailure):
        chat.start_conversation(one, "42", "bad id")
    assert mongo["conversation"].count_documents({}) == 0


def test_empty_message_is_rejected(mongo, pair):
    with pytest.raises(ValidationFailure):
        chat.start_conversation(*pair, "   ")


def test_send_to_missing_conversation(mongo, pair, missing_id):
    with pytest.raises(NotFound):
        chat.send_message(missing_id, pair[0], "hello?")
    with pytest.raises(ValidationFailure):
        chat.send_message("not-an-id", pair[0], "hello?")


def test_outsider_cannot_send_or_mark(mongo, pair, make_user):
    conv = chat.start_conversation(*pair, "hello")
    outsider = make_user("Chaudhry")

    with pytest.raises(ValidationFailure):
        chat.send_message(conv["id"], outsider, "let me in")
    with pytest.raises(ValidationFailure):
        chat.mark_messages_as_read(conv["id"], outsider)
    assert len(messages(mongo, conv["id"])) == 1


def test_mark_read_twice_is_a_noop(mongo, pair):
    one, two = pair
    conv = chat.start_conversation(one, two, "hello")
    chat.send_message(conv["id"], one, "are you there?")

    assert chat.mark_messages_as_read(conv["id"], two) == 2
    after_first = messages(mongo, conv["id"])
    assert chat.mark_messages_as_read(conv["id"], two) == 0
    after_second = messages(mongo, conv["id"])

    assert [m["read"] for m in after_first] == [True, True]
    assert after_second == after_first
    assert counter(mongo, two) == 0


def test_counter_is_decremented_by_exact_count_and_floored(mongo, pair):
    one, two = pair
    conv = chat.start_conversation(one, two, "hello")
    other = chat.start_conversation(one, two, "second thought")  # same pair, same conversation
    assert other["id"] == conv["id"]
    assert counter(mongo, two) == 2

    # another conversation keeps its unread message in the cache
    third = database.create_document("user", {"name": "Dua", "conversations": [], "unread_messages": 0})
    chat.start_conversation(third, two, "hey")
    assert counter(mongo, two) == 3

    chat.mark_messages_as_read(conv["id"], two)
    assert counter(mongo, two) == 1
    assert chat.get_total_unread_count(two) == 1

    mongo["user"].update_one({"_id": ObjectId(one)}, {"$set": {"unread_messages": 0}})
    chat.send_message(conv["id"], two, "hi")
    mongo["user"].update_one({"_id": ObjectId(one)}, {"$set": {"unread_messages": 0}})
    chat.mark_messages_as_read(conv["id"], one)
    assert counter(mongo, one) == 0


def test_total_unread_ignores_a_drifted_counter(mongo, pair, make_user):
    one, two = pair
    three = make_user("Chaudhry")
    a = chat.start_conversation(two, one, "one")
    chat.send_message(a["id"], two, "two")
    chat.start_conversation(three, one, "three")
    chat.send_message(a["id"], one, "mine, not counted")
    mongo["user"].update_one({"_id": ObjectId(one)}, {"$set": {"unread_messages": 42}})

    assert chat.get_total_unread_count(one) == 3


def test_total_unread_for_unknown_user(mongo, missing_id):
    with pytest.raises(NotFound):
        chat.get_total_unread_count(missing_id)


def test_timestamps_never_decrease(mongo, pair, monkeypatch):
    one, two = pair
    conv = chat.start_conversation(one, two, "hello")
    start = messages(mongo, conv["id"])[0]["timestamp"]

    # clock jumps backwards
    monkeypatch.setattr(database, "utcnow", lambda: start - timedelta(minutes=5))
    chat.send_message(conv["id"], two, "hi")
    monkeypatch.setattr(database, "utcnow", lambda: start + timedelta(minutes=1))
    chat.send_message(conv["id"], one, "how are you")

    stamps = [m["timestamp"] for m in messages(mongo, conv["id"])]
    assert stamps == sorted(stamps)
    assert stamps[1] == start
    stored = mongo["conversation"].find_one({"_id": ObjectId(conv["id"])})
    assert stored["last_message"] == stamps[-1]


def test_get_conversations_populates_participants(mongo, pair, make_user):
    one, two = pair
    three = make_user("Chaudhry")
    older = chat.start_conversation(two, one, "first")
    newer = chat.start_conversation(three, one, "second")
    chat.send_message(newer["id"], three, "again")
    mongo["conversation"].update_one({"_id": ObjectId(older["id"])},
                                     {"$set": {"last_message": datetime(2020, 1, 1)}})

    convs = chat.get_conversations(one)

    assert [c["id"] for c in convs] == [newer["id"], older["id"]]
    assert [p["name"] for p in convs[0]["participants"]] == ["Chaudhry", "Ayesha"]
    assert convs[0]["participants"][0]["profile_picture"] == "Chaudhry.png"
    assert "email" not in convs[0]["participants"][0]
    assert [c["unread_count"] for c in convs] == [2, 1]


def test_get_messages_populates_senders_in_order(mongo, pair):
    one, two = pair
    conv = chat.start_conversation(one, two, "hello")
    chat.send_message(conv["id"], two, "hi")

    msgs = chat.get_messages(conv["id"])

    assert [m["content"] for m in msgs] == ["hello", "hi"]
    assert [m["sender"]["name"] for m in msgs] == ["Ayesha", "Bilal"]
    assert msgs[0]["sender"]["id"] == one


def test_counter_floors_at_zero_without_going_negative(mongo, pair):
    one, two = pair
    conv = chat.start_conversation(one, two, "hello")
    chat.send_message(conv["id"], one, "still there?")
    chat.send_message(conv["id"], one, "ping")
    mongo["user"].update_one({"_id": ObjectId(two)}, {"$set": {"unread_messages": 1}})

    assert chat.mark_messages_as_read(conv["id"], two) == 3
    assert counter(mongo, two) == 0

    chat.send_message(conv["id"], one, "one more")
    chat.send_message(conv["id"], one, "and another")
    assert counter(mongo, two) == 2
    assert chat.mark_messages_as_read(conv["id"], two) == 2
    assert counter(mongo, two) == 0
