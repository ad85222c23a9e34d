"""Unit tests for identity resolution before privileges are dropped."""

from __future__ import annotations

import os

import pytest

from vhostlog.core.exceptions import PrivilegeError
from vhostlog.services import privileges


def test_numeric_ids_are_accepted() -> None:
    assert privileges.resolve_uid("1234") == 1234
    assert privileges.resolve_gid("4321") == 4321


def test_names_are_resolved() -> None:
    assert privileges.resolve_uid("root") == 0


def test_unknown_names_raise() -> None:
    with pytest.raises(PrivilegeError):
        privileges.resolve_uid("no-such-user-vhostlog")
    with pytest.raises(PrivilegeError):
        privileges.resolve_gid("no-such-group-vhostlog")


def test_switches_group_before_user(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(os, "geteuid", lambda: 1000)
    monkeypatch.setattr(os, "setgid", lambda gid: calls.append(("gid", gid)))
    monkeypatch.setattr(os, "setuid", lambda uid: calls.append(("uid", uid)))

    privileges.drop_privileges(user="1001", group="1002")

    assert calls == [("gid", 1002), ("uid", 1001)]


def test_permission_denied_is_a_privilege_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _deny(uid):
        raise PermissionError(1, "Operation not permitted")

    monkeypatch.setattr(os, "setuid", _deny)
    with pytest.raises(PrivilegeError):
        privileges.drop_privileges(user="1001")


def test_failed_chroot_is_a_privilege_error(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    def _deny(path):
        raise PermissionError(1, "Operation not permitted")

    monkeypatch.setattr(os, "chroot", _deny)
    with pytest.raises(PrivilegeError):
        privileges.drop_privileges(chroot=tmp_path)
