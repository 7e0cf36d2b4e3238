"""Tests for notepad_sync.auth and the CLI token parsing."""

import argparse
from unittest.mock import MagicMock

import pytest

from notepad_sync.auth import AuthState
from notepad_sync.main import parse_tokens


class TestAuthState:
    def test_login_bumps_version_and_notifies(self):
        auth = AuthState()
        listener = MagicMock()
        auth.add_listener(listener)
        assert auth.logged_in("t1") == 1
        assert auth.logged_in("t2") == 2
        assert [c.args for c in listener.call_args_list] == [(1,), (2,)]
        assert auth.token == "t2"
        assert auth.is_authenticated

    def test_removed_listener_not_called(self):
        auth = AuthState()
        listener = MagicMock()
        auth.add_listener(listener)
        auth.remove_listener(listener)
        auth.logged_in("t")
        listener.assert_not_called()

    def test_logout_keeps_version(self):
        auth = AuthState()
        auth.logged_in("t")
        auth.logged_out()
        assert not auth.is_authenticated
        assert auth.token is None
        assert auth.version == 1


class TestParseTokens:
    def test_pairs(self):
        assert parse_tokens(["a=alice", "b=bob"]) == {"a": "alice", "b": "bob"}

    @pytest.mark.parametrize("bad", ["nouser", "=alice", "tok="])
    def test_rejects_malformed(self, bad):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_tokens([bad])
