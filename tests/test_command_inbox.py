import os

import pytest

from shared.state.command_inbox import CommandInbox, inbox_dir_for


def test_inbox_dir_defaults_next_to_state_file(tmp_path):
    assert inbox_dir_for(tmp_path / "session.json") == tmp_path / "session.commands"
    assert inbox_dir_for(tmp_path / "session.json", tmp_path / "cmds") == tmp_path / "cmds"


def test_pop_all_returns_commands_in_submit_order_and_removes_them(tmp_path):
    inbox = CommandInbox(tmp_path / "inbox")
    inbox.submit("close")
    inbox.submit("clear")

    assert inbox.pop_all() == ["close", "clear"]
    assert inbox.pop_all() == []
    assert list((tmp_path / "inbox").glob("*.cmd")) == []


def test_pop_all_on_missing_dir_is_empty(tmp_path):
    assert CommandInbox(tmp_path / "nowhere").pop_all() == []


def test_submit_rejects_unknown_command(tmp_path):
    with pytest.raises(ValueError, match="Unknown command"):
        CommandInbox(tmp_path).submit("open")


def test_runner_active_follows_pid_file(tmp_path):
    inbox = CommandInbox(tmp_path)
    assert inbox.runner_active() is False

    inbox.mark_running()
    assert inbox.pid_path.read_text(encoding="utf-8") == str(os.getpid())
    assert inbox.runner_active() is True

    inbox.clear_running()
    assert inbox.runner_active() is False


def test_runner_active_ignores_malformed_pid_file(tmp_path):
    inbox = CommandInbox(tmp_path)
    inbox.pid_path.write_text("not-a-pid", encoding="utf-8")
    assert inbox.runner_active() is False
