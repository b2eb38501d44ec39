#!/usr/bin/env python3
"""
Create or update a GitHub pull request.

An open PR in the target repository, opened by the --source user, whose
title contains --match-title is updated with the new title and body; otherwise a new PR is opened from
--source into --branch. The PR number is printed on stdout so callers can
label it.

Without --confirm nothing is written to GitHub.
"""

import argparse
import logging
import sys
from typing import Optional, Tuple

from github_api import GitHubClient, GitHubError

logger = logging.getLogger(__name__)


def read_token(token_path: str) -> str:
    with open(token_path, "r", encoding="utf-8") as f:
        token = f.read().strip()
    if not token:
        raise ValueError(f"token file is empty: {token_path}")
    return token


def strip_quotes(text: str) -> str:
    """Drop one pair of surrounding double quotes, if present."""
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1]
    return text


def find_existing_pr(client: GitHubClient, org: str, repo: str, match_title: str, author: str) -> Optional[int]:
    """
    Return the number of the first open PR by `author` whose title contains
    match_title. PRs opened by anyone else are never reused.
    """
    for item in client.search_pulls(org, repo, match_title, author=author):
        if (item.get("user") or {}).get("login") != author:
            continue
        if match_title in item.get("title", ""):
            return item["number"]
    return None


def create_or_update_pr(
    client: GitHubClient,
    org: str,
    repo: str,
    branch: str,
    title: str,
    match_title: str,
    body: str,
    source: str,
    confirm: bool = False,
) -> Tuple[Optional[int], bool]:
    """
    Create a PR, or update the matching open one.

    Returns:
        Tuple of (PR number, is_existing_pr). The number is None in dry-run
        mode when no matching PR exists.
    """
    match_title = strip_quotes(match_title)
    author = source.partition(":")[0]
    existing = find_existing_pr(client, org, repo, match_title, author)

    if existing is not None:
        if not confirm:
            logger.info(f"[DRY RUN] Would update PR #{existing} in {org}/{repo}: {title}")
            return existing, True
        logger.info(f"Updating existing PR #{existing} in {org}/{repo}")
        client.update_pull(org, repo, existing, title, body)
        return existing, True

    if not confirm:
        logger.info(f"[DRY RUN] Would create PR in {org}/{repo} from {source} into {branch}: {title}")
        return None, False

    logger.info(f"Creating pull request in {org}/{repo} from {source} into {branch}...")
    pr = client.create_pull(org, repo, title, body, head=source, base=branch)
    logger.info(f"Created PR #{pr['number']}: {pr.get('html_url', '')}")
    return pr["number"], False


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Create or update a GitHub pull request")
    parser.add_argument("--github-token-path", required=True, help="File containing the GitHub token")
    parser.add_argument("--org", required=True, help="Organization owning the target repository")
    parser.add_argument("--repo", required=True, help="Target repository name")
    parser.add_argument("--branch", required=True, help="Base branch of the PR")
    parser.add_argument("--title", required=True, help="PR title")
    parser.add_argument("--match-title", help="Update an open PR whose title contains this text (default: --title)")
    parser.add_argument("--body", default="", help="PR body")
    parser.add_argument("--source", required=True, help="Head of the PR as user:branch")
    parser.add_argument("--confirm", action="store_true", help="Actually create or update the PR")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    # stdout carries the PR number, so logs go to stderr
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )

    try:
        client = GitHubClient(read_token(args.github_token_path))
        number, _ = create_or_update_pr(
            client,
            org=args.org,
            repo=args.repo,
            branch=args.branch,
            title=args.title,
            match_title=args.match_title or args.title,
            body=args.body,
            source=args.source,
            confirm=args.confirm,
        )
    except (OSError, ValueError, GitHubError) as e:
        logger.error(f"Failed to create PR for {args.org}/{args.repo}: {e}")
        return 1

    if number is not None and args.confirm:
        print(number)
    return 0


if __name__ == "__main__":
    sys.exit(main())
