"""
Tests for the authorization policy decision functions.
"""

from types import SimpleNamespace

import pytest

from messagely.errors import ForbiddenError
from messagely.policy import (
    ensure_can_mark_read,
    ensure_can_view_message,
    ensure_self,
    is_participant,
    sender_for,
)


@pytest.fixture
def message():
    return SimpleNamespace(id=1, from_username="alice", to_username="bob")


class TestViewMessage:

    @pytest.mark.parametrize("actor", ["alice", "bob"])
    def test_participants_allowed(self, message, actor):
        ensure_can_view_message(actor, message)
        assert is_participant(actor, message)

    def test_outsider_denied(self, message):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_can_view_message("carol", message)

        assert exc_info.value.status_code == 401


class TestMarkRead:

    def test_recipient_allowed(self, message):
        ensure_can_mark_read("bob", message)

    def test_sender_denied(self, message):
        with pytest.raises(ForbiddenError):
            ensure_can_mark_read("alice", message)

    def test_outsider_denied(self, message):
        with pytest.raises(ForbiddenError):
            ensure_can_mark_read("carol", message)


class TestSelfOnly:

    def test_self_allowed(self):
        ensure_self("alice", "alice")

    def test_other_denied(self):
        with pytest.raises(ForbiddenError):
            ensure_self("alice", "bob")


class TestSender:

    def test_sender_is_actor(self):
        assert sender_for("alice") == "alice"

    def test_claimed_sender_overridden(self):
        assert sender_for("alice", claimed="bob") == "alice"
