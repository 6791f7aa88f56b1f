import pytest
from sqlalchemy.exc import OperationalError

from app.errors import InvalidOperation, StoreError, ValidationError
from app.models.block import Block
from app.models.conversation import Conversation
from app.models.message import Message
from app.services.conversations import ConversationStore, canonical_pair


async def make_mutual(follows, a, b):
    await follows.follow(a.id, b.id)
    await follows.follow(b.id, a.id)


# Gating

async def test_strangers_first_message_is_a_pending_request(messaging, users):
    alice, bob, _ = users
    msg = await messaging.send_message(alice.id, bob.id, "hello")

    assert msg.is_request is True
    assert msg.request_accepted is False
    assert msg.is_read is False
    assert msg.sender_id == alice.id
    assert msg.receiver_id == bob.id


async def test_mutual_followers_message_directly(messaging, follows, users):
    alice, bob, _ = users
    await make_mutual(follows, alice, bob)

    msg = await messaging.send_message(alice.id, bob.id, "hey")

    assert msg.is_request is False
    assert msg.request_accepted is True


async def test_one_way_follow_still_goes_to_requests_until_accepted(messaging, follows, users):
    alice, bob, _ = users
    await follows.follow(alice.id, bob.id)

    first = await messaging.send_message(alice.id, bob.id, "hi")
    assert first.is_request is True
    assert first.request_accepted is False

    assert await messaging.accept_request(first.conversation_id, bob.id) is True

    second = await messaging.send_message(alice.id, bob.id, "hi again")
    assert second.is_request is False
    assert second.request_accepted is True

    reply = await messaging.send_message(bob.id, alice.id, "hello back")
    assert reply.is_request is False
    assert reply.conversation_id == first.conversation_id


async def test_content_is_trimmed(messaging, users):
    alice, bob, _ = users
    msg = await messaging.send_message(alice.id, bob.id, "   padded  ")
    assert msg.content == "padded"


@pytest.mark.parametrize("content", ["", "   ", None])
async def test_empty_content_is_rejected(messaging, users, content, count_rows):
    alice, bob, _ = users
    with pytest.raises(ValidationError):
        await messaging.send_message(alice.id, bob.id, content)
    assert await count_rows(Conversation) == 0


async def test_cannot_message_self(messaging, users):
    alice, _, _ = users
    with pytest.raises(InvalidOperation):
        await messaging.send_message(alice.id, alice.id, "me")


async def test_missing_receiver_is_a_validation_error(messaging, users):
    alice, _, _ = users
    with pytest.raises(ValidationError):
        await messaging.send_message(alice.id, None, "hello")


# Conversations

async def test_conversation_is_shared_regardless_of_who_sends_first(messaging, users, count_rows):
    alice, bob, _ = users
    from_bob = await messaging.send_message(bob.id, alice.id, "first")
    from_alice = await messaging.send_message(alice.id, bob.id, "second")

    assert from_bob.conversation_id == from_alice.conversation_id
    assert await count_rows(Conversation) == 1

    conversation = await messaging.conversations.get(from_bob.conversation_id)
    assert conversation.user1_id == min(alice.id, bob.id)
    assert conversation.user2_id == max(alice.id, bob.id)


async def test_get_or_create_rejects_same_user(messaging, users):
    alice, _, _ = users
    with pytest.raises(InvalidOperation):
        await messaging.conversations.get_or_create(alice.id, alice.id)


def test_canonical_pair_puts_smaller_id_first():
    assert canonical_pair(7, 3) == (3, 7)
    assert canonical_pair(3, 7) == (3, 7)


async def test_get_or_create_uses_winner_row_after_lost_race(database, session, users, monkeypatch, count_rows):
    alice, bob, _ = users
    store = ConversationStore(session)

    # Another request inserts the row between our lookup and our insert
    async with database.session_factory() as other:
        winner = Conversation(user1_id=alice.id, user2_id=bob.id)
        other.add(winner)
        await other.commit()
        winner_id = winner.id

    original_get_by_pair = store.get_by_pair
    calls = {"n": 0}

    async def stale_get_by_pair(user1_id, user2_id, lock=False):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await original_get_by_pair(user1_id, user2_id, lock=lock)

    monkeypatch.setattr(store, "get_by_pair", stale_get_by_pair)

    conversation = await store.get_or_create(bob.id, alice.id)

    assert conversation.id == winner_id
    assert await count_rows(Conversation) == 1


async def test_send_after_lost_conversation_race_keeps_session_usable(
    database, messaging, users, monkeypatch, count_rows
):
    alice, bob, _ = users

    async with database.session_factory() as other:
        other.add(Conversation(user1_id=alice.id, user2_id=bob.id))
        await other.commit()

    original_get_by_pair = messaging.conversations.get_by_pair
    calls = {"n": 0}

    async def stale_get_by_pair(user1_id, user2_id, lock=False):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await original_get_by_pair(user1_id, user2_id, lock=lock)

    monkeypatch.setattr(messaging.conversations, "get_by_pair", stale_get_by_pair)

    msg = await messaging.send_message(alice.id, bob.id, "first contact")

    assert msg is not None
    assert msg.content == "first contact"
    # Objects loaded before the conflict are not expired by it
    assert alice.username == "alice"
    assert await count_rows(Conversation) == 1


async def test_send_updates_last_message_at(messaging, users):
    alice, bob, _ = users
    first = await messaging.send_message(alice.id, bob.id, "one")
    conversation = await messaging.conversations.get(first.conversation_id)
    before = conversation.last_message_at

    await messaging.send_message(alice.id, bob.id, "two")
    conversation = await messaging.conversations.get(first.conversation_id)

    assert conversation.last_message_at >= before


# Blocking

async def test_blocked_sender_gets_none_and_nothing_is_written(messaging, users, count_rows):
    alice, bob, _ = users
    await messaging.block_user(alice.id, bob.id)

    assert await messaging.send_message(bob.id, alice.id, "x") is None
    assert await count_rows(Message) == 0
    assert await count_rows(Conversation) == 0


async def test_block_only_applies_in_one_direction(messaging, users):
    alice, bob, _ = users
    await messaging.block_user(alice.id, bob.id)

    msg = await messaging.send_message(alice.id, bob.id, "you can't answer")
    assert msg is not None


async def test_block_is_idempotent_and_unblock_restores_sending(messaging, users):
    alice, bob, _ = users
    await messaging.block_user(alice.id, bob.id)
    await messaging.block_user(alice.id, bob.id)
    assert await messaging.blocks.is_blocked(alice.id, bob.id) is True

    await messaging.unblock_user(alice.id, bob.id)
    await messaging.unblock_user(alice.id, bob.id)
    assert await messaging.blocks.is_blocked(alice.id, bob.id) is False

    assert await messaging.send_message(bob.id, alice.id, "back") is not None


async def test_blocking_keeps_existing_history(messaging, follows, users):
    alice, bob, _ = users
    await make_mutual(follows, alice, bob)
    msg = await messaging.send_message(bob.id, alice.id, "before the block")

    await messaging.block_user(alice.id, bob.id)

    messages = await messaging.get_messages(msg.conversation_id, alice.id)
    assert [m.content for m in messages] == ["before the block"]


async def test_cannot_block_self(messaging, users):
    alice, _, _ = users
    with pytest.raises(InvalidOperation):
        await messaging.block_user(alice.id, alice.id)


async def test_blocking_unknown_user_is_a_store_error(messaging, users, count_rows):
    alice, _, _ = users
    with pytest.raises(StoreError):
        await messaging.block_user(alice.id, 9999)
    assert await count_rows(Block) == 0


# Request lifecycle

async def test_accept_without_pending_request_returns_false(messaging, follows, users):
    alice, bob, _ = users
    await make_mutual(follows, alice, bob)
    msg = await messaging.send_message(alice.id, bob.id, "direct")

    # Only the receiver of a request can accept it
    assert await messaging.accept_request(msg.conversation_id, alice.id) is False
    assert await messaging.accept_request(9999, bob.id) is False


async def test_decline_removes_only_pending_inbound_messages(messaging, users):
    alice, bob, _ = users
    request = await messaging.send_message(alice.id, bob.id, "hi bob")
    own = await messaging.send_message(bob.id, alice.id, "who is this?")
    conversation_id = request.conversation_id

    assert await messaging.decline_request(conversation_id, bob.id) is True

    alice_view = await messaging.get_messages(conversation_id, alice.id)
    assert [m.id for m in alice_view] == [own.id]
    assert await messaging.get_messages(conversation_id, bob.id) == []

    # Nothing left to decline
    assert await messaging.decline_request(conversation_id, bob.id) is False


async def test_sender_can_message_again_after_decline(messaging, users, count_rows):
    alice, bob, _ = users
    first = await messaging.send_message(alice.id, bob.id, "hi")
    await messaging.decline_request(first.conversation_id, bob.id)

    again = await messaging.send_message(alice.id, bob.id, "hi again")

    assert again.conversation_id == first.conversation_id
    assert again.is_request is True
    assert await count_rows(Conversation) == 1


async def test_decline_after_accept_is_a_no_op(messaging, users):
    alice, bob, _ = users
    msg = await messaging.send_message(alice.id, bob.id, "hi")
    await messaging.accept_request(msg.conversation_id, bob.id)

    assert await messaging.decline_request(msg.conversation_id, bob.id) is False
    assert len(await messaging.get_messages(msg.conversation_id, alice.id)) == 1


async def test_respond_to_request_dispatches_on_action(messaging, users):
    alice, bob, _ = users
    msg = await messaging.send_message(alice.id, bob.id, "hi")

    assert await messaging.respond_to_request(msg.conversation_id, bob.id, "archive") is False
    assert await messaging.respond_to_request(msg.conversation_id, bob.id, "accept") is True


# Reading

async def test_get_messages_for_non_participant_is_empty(messaging, users):
    alice, bob, carol = users
    msg = await messaging.send_message(alice.id, bob.id, "private")

    assert await messaging.get_messages(msg.conversation_id, carol.id) == []
    assert await messaging.get_messages(12345, carol.id) == []


async def test_get_messages_marks_inbound_read_once(messaging, follows, users):
    alice, bob, _ = users
    await make_mutual(follows, alice, bob)
    first = await messaging.send_message(alice.id, bob.id, "one")
    await messaging.send_message(alice.id, bob.id, "two")

    initial = await messaging.get_messages(first.conversation_id, bob.id)
    assert [m.content for m in initial] == ["one", "two"]
    assert [m.is_read for m in initial] == [False, False]

    repeat = await messaging.get_messages(first.conversation_id, bob.id)
    assert [m.content for m in repeat] == ["one", "two"]
    assert [m.is_read for m in repeat] == [True, True]


async def test_sender_reading_does_not_mark_their_own_messages(messaging, follows, users):
    alice, bob, _ = users
    await make_mutual(follows, alice, bob)
    msg = await messaging.send_message(alice.id, bob.id, "one")

    await messaging.get_messages(msg.conversation_id, alice.id)

    assert await messaging.get_unread_count(bob.id) == 1


async def test_pending_request_is_visible_to_receiver_only(messaging, users):
    alice, bob, _ = users
    msg = await messaging.send_message(alice.id, bob.id, "hello?")

    assert [m.id for m in await messaging.get_messages(msg.conversation_id, bob.id)] == [msg.id]
    assert await messaging.get_messages(msg.conversation_id, alice.id) == []

    await messaging.accept_request(msg.conversation_id, bob.id)
    assert [m.id for m in await messaging.get_messages(msg.conversation_id, alice.id)] == [msg.id]


async def test_messages_are_ordered_oldest_first(messaging, follows, users):
    alice, bob, _ = users
    await make_mutual(follows, alice, bob)
    sent = []
    for text in ["a", "b", "c"]:
        sent.append(await messaging.send_message(alice.id, bob.id, text))
        sent.append(await messaging.send_message(bob.id, alice.id, text.upper()))

    messages = await messaging.get_messages(sent[0].conversation_id, alice.id)
    assert [m.id for m in messages] == [m.id for m in sent]


# Listing

async def test_mutual_conversation_appears_for_both_users(messaging, follows, users):
    alice, bob, _ = users
    await make_mutual(follows, alice, bob)
    msg = await messaging.send_message(alice.id, bob.id, "hey")

    for viewer, other in [(alice, bob), (bob, alice)]:
        [summary] = await messaging.list_conversations(viewer.id)
        assert summary.conversation.id == msg.conversation_id
        assert summary.counterpart.id == other.id
        assert summary.last_message.content == "hey"
        assert summary.last_message_at == msg.created_at

    [bob_summary] = await messaging.list_conversations(bob.id)
    [alice_summary] = await messaging.list_conversations(alice.id)
    assert bob_summary.unread_count == 1
    assert alice_summary.unread_count == 0


async def test_pending_request_listed_for_receiver_but_not_sender(messaging, users):
    alice, bob, _ = users
    await messaging.send_message(alice.id, bob.id, "hello?")

    assert await messaging.list_conversations(alice.id) == []
    [summary] = await messaging.list_conversations(bob.id)
    assert summary.counterpart.id == alice.id
    # Pending requests are counted in the requests badge, not as unread chat
    assert summary.unread_count == 0


async def test_conversations_are_ordered_by_latest_activity(messaging, follows, users):
    alice, bob, carol = users
    await make_mutual(follows, alice, bob)
    await make_mutual(follows, alice, carol)

    await messaging.send_message(alice.id, bob.id, "to bob")
    await messaging.send_message(carol.id, alice.id, "from carol")

    summaries = await messaging.list_conversations(alice.id)
    assert [s.counterpart.username for s in summaries] == ["carol", "bob"]

    await messaging.send_message(bob.id, alice.id, "bob again")
    summaries = await messaging.list_conversations(alice.id)
    assert [s.counterpart.username for s in summaries] == ["bob", "carol"]


async def test_message_requests_list_latest_pending_per_conversation(messaging, users):
    alice, bob, carol = users
    await messaging.send_message(alice.id, bob.id, "first from alice")
    await messaging.send_message(alice.id, bob.id, "second from alice")
    await messaging.send_message(carol.id, bob.id, "hi from carol")

    requests = await messaging.list_message_requests(bob.id)

    assert [(r.sender.username, r.last_message.content) for r in requests] == [
        ("carol", "hi from carol"),
        ("alice", "second from alice"),
    ]
    assert await messaging.list_message_requests(alice.id) == []


async def test_accepted_request_leaves_requests_list(messaging, users):
    alice, bob, _ = users
    msg = await messaging.send_message(alice.id, bob.id, "hi")
    await messaging.accept_request(msg.conversation_id, bob.id)

    assert await messaging.list_message_requests(bob.id) == []
    [summary] = await messaging.list_conversations(alice.id)
    assert summary.conversation.id == msg.conversation_id


async def test_unread_and_request_counts(messaging, follows, users):
    alice, bob, carol = users
    await make_mutual(follows, alice, bob)
    await messaging.send_message(alice.id, bob.id, "one")
    await messaging.send_message(alice.id, bob.id, "two")
    await messaging.send_message(carol.id, bob.id, "request one")
    await messaging.send_message(carol.id, bob.id, "request two")

    assert await messaging.get_unread_count(bob.id) == 2
    assert await messaging.get_request_count(bob.id) == 1
    assert await messaging.get_request_count(alice.id) == 0


# Store failures

async def test_store_failures_surface_as_store_error(messaging, session, users, monkeypatch):
    alice, bob, _ = users

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    monkeypatch.setattr(session, "execute", broken_execute)

    with pytest.raises(StoreError):
        await messaging.send_message(alice.id, bob.id, "hello")


# Follow graph

async def test_follow_graph_edges(follows, users):
    alice, bob, carol = users
    await follows.follow(alice.id, bob.id)
    await follows.follow(alice.id, bob.id)
    await follows.follow(carol.id, bob.id)

    assert await follows.following_ids(alice.id) == [bob.id]
    assert sorted(await follows.follower_ids(bob.id)) == sorted([alice.id, carol.id])
    assert await follows.is_mutual(alice.id, bob.id) is False

    await follows.follow(bob.id, alice.id)
    assert await follows.is_mutual(alice.id, bob.id) is True
    assert await follows.is_mutual(bob.id, alice.id) is True

    await follows.unfollow(alice.id, bob.id)
    assert await follows.is_following(alice.id, bob.id) is False
    assert await follows.is_mutual(alice.id, bob.id) is False
