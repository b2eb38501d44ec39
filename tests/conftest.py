"""
Shared fixtures for the automator tests.
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Make the top-level modules importable without installing the package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from automator import Options  # noqa: E402


def git(*args, cwd=None):
    return subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


@pytest.fixture
def make_options(tmp_path):
    """Build Options with sensible test values; override any field by keyword."""
    script = tmp_path / "script.sh"
    script.write_text("exit 0\n")

    def _make(**overrides):
        values = dict(
            org="istio",
            repos=("api",),
            branch="main",
            sha="0123456789abcdef0123456789abcdef01234567",
            sha_short="0123456",
            modifier="automator",
            title_template="Automator: update $AUTOMATOR_ORG/$AUTOMATOR_REPO@$AUTOMATOR_BRANCH-$AUTOMATOR_MODIFIER",
            match_title_template="Automator: update $AUTOMATOR_ORG/$AUTOMATOR_REPO@$AUTOMATOR_BRANCH-$AUTOMATOR_MODIFIER",
            body_template="Generated by Automator",
            labels=(),
            user="octocat",
            email="octocat@example.com",
            script_path=str(script),
            script_args=(),
            token_path=str(tmp_path / "token"),
            token="s3cr3t-token",
            dry_run=False,
        )
        values.update(overrides)
        return Options(**values)

    return _make


@pytest.fixture
def upstream(tmp_path):
    """
    A local "GitHub": tmp_path/remote/<org>/<repo>.git bare repositories with a
    main branch containing README.md.
    """
    remote = tmp_path / "remote"

    def _create(org, repo):
        work = tmp_path / "seed" / org / repo
        work.mkdir(parents=True)
        git("init", "-q", cwd=work)
        git("checkout", "-q", "-b", "main", cwd=work)
        (work / "README.md").write_text(f"# {repo}\n")
        git("add", "README.md", cwd=work)
        git("commit", "-q", "-m", "initial", cwd=work)
        bare = remote / org / f"{repo}.git"
        bare.parent.mkdir(parents=True, exist_ok=True)
        git("clone", "-q", "--bare", str(work), str(bare))
        return bare

    _create.root = remote
    return _create
