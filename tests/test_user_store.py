"""Tests for the user store interface and its SQL implementation."""

from datetime import timedelta

import pytest

from scheduled_matching.storage.user_store import UserStore
from scheduled_matching.utils.timeutil import utcnow


class DictUserStore(UserStore):
    """Only implements lookups."""

    def __init__(self, users):
        self.users = users

    def get_users(self, user_ids):
        return {uid: self.users[uid] for uid in user_ids if uid in self.users}


def test_incomplete_store_cannot_be_instantiated():
    with pytest.raises(TypeError):
        DictUserStore({})


def test_interface_itself_is_abstract():
    with pytest.raises(TypeError):
        UserStore()


class TestSqlUserStore:
    def test_eligibility_filters(self, user_store, add_user):
        add_user("ok")
        add_user("jp", country="JP")
        add_user("idle", days_since_login=10)
        add_user("never", days_since_login=None)
        add_user("banned", status="suspended")
        add_user("unranked", rank="UNKNOWN")

        assert user_store.eligible_user_ids("KR", 7, False, utcnow()) == ["ok"]
        assert user_store.eligible_user_ids("KR", 7, True, utcnow()) == ["ok", "unranked"]

    def test_login_window_is_measured_from_now(self, user_store, add_user):
        add_user("ok", days_since_login=1)
        assert user_store.eligible_user_ids("KR", 7, False, utcnow() + timedelta(days=10)) == []

    def test_get_user(self, user_store, add_user):
        add_user("u1", name="Minjun")
        assert user_store.get_user("u1").name == "Minjun"
        assert user_store.get_user("missing") is None
