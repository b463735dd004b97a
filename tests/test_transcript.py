"""
Tests for the transcript store and its pending-replacement merge rule.
"""

import dataclasses
import random
from datetime import datetime

import pytest

from src.tutor.transcript import Message, TranscriptStore


def _user(text="Hello"):
    return Message(text=text, is_user=True)


def _pending():
    return Message(text="Thinking...", is_user=False, is_pending=True)


def _assistant(text="Hi there!"):
    return Message(text=text, is_user=False)


class TestAppend:
    """Tests for TranscriptStore.append."""

    def test_append_to_empty(self):
        store = TranscriptStore()
        replaced = store.append(_user())

        assert replaced is False
        assert len(store) == 1
        assert store.last.text == "Hello"

    def test_final_replaces_pending_in_place(self):
        store = TranscriptStore()
        store.append(_user())
        store.append(_pending())
        assert len(store) == 2
        assert store.pending is not None

        replaced = store.append(_assistant("I'm doing well, thanks!"))

        assert replaced is True
        assert len(store) == 2
        assert store.messages[1].text == "I'm doing well, thanks!"
        assert store.messages[1].is_pending is False
        assert store.pending is None

    def test_non_pending_after_non_pending_appends(self):
        store = TranscriptStore()
        store.append(_user("one"))
        store.append(_assistant("two"))

        assert [m.text for m in store] == ["one", "two"]

    def test_user_message_also_resolves_pending(self):
        store = TranscriptStore()
        store.append(_pending())
        store.append(_user("late"))

        assert len(store) == 1
        assert store.last.is_user is True

    def test_second_pending_is_rejected(self):
        store = TranscriptStore()
        store.append(_pending())

        with pytest.raises(ValueError):
            store.append(_pending())
        assert len(store) == 1

    def test_merge_rule_holds_for_random_sequences(self):
        rng = random.Random(1234)

        for _ in range(200):
            store = TranscriptStore()
            for _ in range(rng.randint(1, 12)):
                incoming_pending = rng.random() < 0.4
                if incoming_pending and store.pending is not None:
                    continue
                message = _pending() if incoming_pending else _user(str(rng.random()))

                before = len(store)
                last_was_pending = store.pending is not None
                store.append(message)

                if last_was_pending and not message.is_pending:
                    assert len(store) == before
                    assert store.last is message
                else:
                    assert len(store) == before + 1

                pending_count = sum(1 for m in store if m.is_pending)
                assert pending_count <= 1
                if pending_count:
                    assert store.last.is_pending


class TestReadAccess:
    def test_messages_is_a_snapshot(self):
        store = TranscriptStore()
        store.append(_user())
        snapshot = store.messages
        store.append(_assistant())

        assert len(snapshot) == 1
        assert len(store.messages) == 2

    def test_listeners_receive_snapshots(self):
        store = TranscriptStore()
        seen = []
        store.subscribe(lambda messages: seen.append([m.text for m in messages]))

        store.append(_user("How are you?"))
        store.append(_pending())
        store.append(_assistant("Fine."))

        assert seen == [
            ["How are you?"],
            ["How are you?", "Thinking..."],
            ["How are you?", "Fine."],
        ]


class TestMessage:
    def test_message_is_immutable(self):
        message = _user()
        with pytest.raises(dataclasses.FrozenInstanceError):
            message.text = "changed"

    def test_display_time(self):
        message = Message(text="x", is_user=True, timestamp=datetime(2024, 5, 1, 9, 7))
        assert message.display_time == "09:07"

    def test_to_dict(self):
        message = Message(text="x", is_user=False, timestamp=datetime(2024, 5, 1, 9, 7), is_pending=True)
        assert message.to_dict() == {
            "text": "x",
            "is_user": False,
            "timestamp": "2024-05-01T09:07:00",
            "is_pending": True,
        }
