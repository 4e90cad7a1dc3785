from datetime import UTC, datetime, timedelta

from skillmaster_core.models import Conversation, Message, Role
from tests.storage.base import StoreTestCase

T0 = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


class ConversationRepositoryTests(StoreTestCase):
    def _conversation(self, user_id: str = "u1", *texts: str) -> Conversation:
        conversation = Conversation(user_id=user_id, created_at=T0, updated_at=T0)
        for i, text in enumerate(texts):
            role = Role.USER if i % 2 == 0 else Role.ASSISTANT
            conversation.append(Message(role, text, timestamp=T0 + timedelta(minutes=i)))
        return conversation

    def test_save_and_load_round_trip(self) -> None:
        conversation = self._conversation("u1", "What is a list?", "An ordered collection.")
        conversation.append(
            Message(Role.USER, "Show me", timestamp=T0 + timedelta(minutes=5), payload=None)
        )
        conversation.append(
            Message(
                Role.ASSISTANT,
                "```python\nx = [1]\n```",
                timestamp=T0 + timedelta(minutes=6),
                payload={"language": "python", "code": "x = [1]"},
            )
        )
        self._conversations.save(conversation)

        loaded = self._conversations.load(conversation.id)
        self.assertIsNotNone(loaded)
        self.assertEqual("u1", loaded.user_id)
        self.assertEqual(conversation.messages, loaded.messages)
        self.assertEqual(T0 + timedelta(minutes=6), loaded.updated_at)
        self.assertEqual("What is a list?", loaded.title)

    def test_repeated_saves_append_only_new_messages(self) -> None:
        conversation = self._conversation("u1", "one")
        self._conversations.save(conversation)
        conversation.append(Message(Role.ASSISTANT, "two", timestamp=T0 + timedelta(minutes=1)))
        self._conversations.save(conversation)
        self._conversations.save(conversation)

        rows = self._store.execute(
            "SELECT seq, content FROM messages WHERE conversation_id = ? ORDER BY seq",
            (conversation.id,),
        ).fetchall()
        self.assertEqual([(1, "one"), (2, "two")], [(int(r["seq"]), r["content"]) for r in rows])

    def test_load_missing_returns_none(self) -> None:
        self.assertIsNone(self._conversations.load("nope"))

    def test_list_for_user_newest_first(self) -> None:
        older = self._conversation("u1", "older")
        newer = self._conversation("u1", "newer")
        newer.updated_at = T0 + timedelta(hours=1)
        other = self._conversation("u2", "someone else")
        for conversation in (older, newer, other):
            self._conversations.save(conversation)

        listed = self._conversations.list_for_user("u1")
        self.assertEqual([newer.id, older.id], [c.id for c in listed])
        self.assertEqual(1, len(self._conversations.list_for_user("u1", limit=1)))

    def test_sub_second_timestamps_survive_round_trip(self) -> None:
        stamp = T0 + timedelta(microseconds=123456)
        conversation = Conversation(user_id="u1", created_at=stamp, updated_at=stamp)
        conversation.append(Message(Role.USER, "precise", timestamp=stamp))
        self._conversations.save(conversation)

        loaded = self._conversations.load(conversation.id)
        self.assertEqual(stamp, loaded.messages[0].timestamp)
        self.assertEqual(stamp, loaded.updated_at)

    def test_list_orders_updates_within_the_same_second(self) -> None:
        first = Conversation(user_id="u1", created_at=T0, updated_at=T0 + timedelta(microseconds=100))
        second = Conversation(user_id="u1", created_at=T0, updated_at=T0 + timedelta(microseconds=900))
        self._conversations.save(second)
        self._conversations.save(first)

        self.assertEqual([second.id, first.id], [c.id for c in self._conversations.list_for_user("u1")])
