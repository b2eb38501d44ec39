"""
Tests for cleanup of per-run scratch state.
"""

import os
import signal
from unittest.mock import Mock, patch

import pytest

import automator
from automator import Scratch, main


def test_scratch_removes_everything(tmp_path):
    with Scratch() as scratch:
        root = scratch.root
        (root / "api").mkdir()
        (root / "api" / "file.txt").write_text("x")
        token = scratch.write_token("abc")
        script = scratch.write_script("echo hi")
        assert root.is_dir() and os.path.exists(token) and os.path.exists(script)

    assert not root.exists()
    assert not os.path.exists(token)
    assert not os.path.exists(script)


def test_token_file_is_private():
    with Scratch() as scratch:
        token = scratch.write_token("abc")
        assert os.stat(token).st_mode & 0o077 == 0


def test_cleanup_on_exception():
    with pytest.raises(RuntimeError):
        with Scratch() as scratch:
            root = scratch.root
            token = scratch.write_token("abc")
            raise RuntimeError("boom")
    assert not root.exists()
    assert not os.path.exists(token)


def test_signal_becomes_system_exit():
    with pytest.raises(SystemExit) as excinfo:
        automator._exit_on_signal(signal.SIGTERM, None)
    assert excinfo.value.code == 128 + signal.SIGTERM


@pytest.fixture
def restore_signals():
    saved = {name: signal.getsignal(getattr(signal, name))
             for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name)}
    yield
    for name, handler in saved.items():
        signal.signal(getattr(signal, name), handler)


@pytest.mark.parametrize("interruption, expected", [
    (KeyboardInterrupt, 130),
    (SystemExit(143), None),
])
def test_interrupted_run_leaves_nothing_behind(interruption, expected, restore_signals):
    client = Mock()
    client.get_user.return_value = {"login": "octocat", "email": "octocat@example.com"}
    created = {}

    def interrupted_batch(options, clone_dir, client, root_dir):
        (clone_dir / "api").mkdir()
        created["paths"] = [clone_dir, options.token_path, options.script_path]
        raise interruption

    argv = ["--org", "istio", "--repo", "api,proxy", "--branch", "main", "--sha", "abc1234",
            "--token", "inline-token", "--cmd", "make gen"]
    with patch.object(automator, "GitHubClient", return_value=client), \
            patch.object(automator, "run_batch", side_effect=interrupted_batch):
        if expected is None:
            with pytest.raises(SystemExit):
                main(argv)
        else:
            assert main(argv) == expected

    assert created["paths"]
    for path in created["paths"]:
        assert not os.path.exists(path)
