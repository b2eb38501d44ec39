"""
Tests for the create-or-update pull request helper.
"""

from unittest.mock import Mock, patch

import pytest

import pr_creator
from github_api import GitHubError
from pr_creator import create_or_update_pr, find_existing_pr, strip_quotes

PR_ARGS = dict(
    org="istio",
    repo="api",
    branch="main",
    title="Automator: update istio/api@main-automator",
    match_title='"Automator: update istio/api@main-automator"',
    body="Generated by Automator",
    source="octocat:main-automator",
)


@pytest.fixture
def client():
    client = Mock()
    client.search_pulls.return_value = []
    client.create_pull.return_value = {"number": 12, "html_url": "https://github.com/istio/api/pull/12"}
    return client


def test_strip_quotes():
    assert strip_quotes('"a b"') == "a b"
    assert strip_quotes("a b") == "a b"
    assert strip_quotes('"') == '"'


def test_find_existing_requires_title_match(client):
    client.search_pulls.return_value = [
        {"number": 1, "title": "unrelated"},
        {"number": 2, "title": "[release] Automator: update istio/api@main-automator", "user": {"login": "octocat"}},
    ]
    assert find_existing_pr(client, "istio", "api", "Automator: update istio/api@main-automator", "octocat") == 2


def test_creates_when_no_match(client):
    number, existing = create_or_update_pr(client, confirm=True, **PR_ARGS)
    assert (number, existing) == (12, False)
    client.search_pulls.assert_called_once_with(
        "istio", "api", "Automator: update istio/api@main-automator", author="octocat"
    )
    client.create_pull.assert_called_once_with(
        "istio", "api", PR_ARGS["title"], PR_ARGS["body"], head="octocat:main-automator", base="main"
    )


def test_updates_matching_pr(client):
    client.search_pulls.return_value = [{"number": 5, "title": PR_ARGS["title"], "user": {"login": "octocat"}}]
    number, existing = create_or_update_pr(client, confirm=True, **PR_ARGS)
    assert (number, existing) == (5, True)
    client.update_pull.assert_called_once_with("istio", "api", 5, PR_ARGS["title"], PR_ARGS["body"])
    client.create_pull.assert_not_called()


def test_without_confirm_nothing_is_written(client):
    number, existing = create_or_update_pr(client, confirm=False, **PR_ARGS)
    assert (number, existing) == (None, False)
    client.create_pull.assert_not_called()
    client.update_pull.assert_not_called()


def cli_args(token_path, *extra):
    return [
        f"--github-token-path={token_path}",
        "--org=istio",
        "--repo=api",
        "--branch=main",
        "--title=T",
        '--match-title="T"',
        "--body=B",
        "--source=octocat:main-automator",
        *extra,
    ]


def test_main_prints_pr_number(tmp_path, capsys, client):
    token = tmp_path / "token"
    token.write_text("t0ken\n")
    with patch.object(pr_creator, "GitHubClient", return_value=client) as factory:
        assert pr_creator.main(cli_args(token, "--confirm")) == 0
    factory.assert_called_once_with("t0ken")
    assert capsys.readouterr().out.strip() == "12"


def test_main_dry_run_prints_nothing(tmp_path, capsys, client):
    token = tmp_path / "token"
    token.write_text("t0ken\n")
    with patch.object(pr_creator, "GitHubClient", return_value=client):
        assert pr_creator.main(cli_args(token)) == 0
    assert capsys.readouterr().out == ""


def test_main_api_failure(tmp_path, capsys, client):
    token = tmp_path / "token"
    token.write_text("t0ken\n")
    client.search_pulls.side_effect = GitHubError("GET search/issues returned 422", status_code=422)
    with patch.object(pr_creator, "GitHubClient", return_value=client):
        assert pr_creator.main(cli_args(token, "--confirm")) == 1
    assert capsys.readouterr().out == ""


def test_main_missing_token_file(tmp_path):
    assert pr_creator.main(cli_args(tmp_path / "missing", "--confirm")) == 1


def test_pr_by_another_author_is_never_reused(client):
    client.search_pulls.return_value = [{
        "number": 99,
        "title": PR_ARGS["title"],
        "user": {"login": "someone-else"},
        "head": {"label": "someone-else:feature"},
    }]
    number, existing = create_or_update_pr(client, confirm=True, **PR_ARGS)
    assert (number, existing) == (12, False)
    client.update_pull.assert_not_called()
    client.create_pull.assert_called_once()
