#!/usr/bin/env python3
"""
Automator: run a script across GitHub repositories and open pull requests

For every repository given with --repo, this script forks it, clones the
requested branch into a scratch directory, runs the user script inside the
clone and, if the script left changes behind, commits them, force-pushes to
<user>/<repo>:<branch>-<modifier>, creates or updates the pull request and
applies labels.

A failing repository never stops the batch. The exit code is 0 when every
repository succeeded, otherwise the exit code of the last failure.

Requirements:
- git and bash on PATH
- pr-creator (installed with this package) on PATH
- A GitHub token with repo scope
"""

import argparse
import json
import logging
import os
import shutil
import signal
import subprocess
import sys
import tempfile
from collections import defaultdict
from dataclasses import dataclass, field
from functools import reduce
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import (
    DEFAULT_BODY_TEMPLATE,
    DEFAULT_MODIFIER,
    DEFAULT_TITLE_TEMPLATE,
    GITHUB_HOST,
    PR_CREATOR_COMMAND,
    SCRATCH_DIR_PREFIX,
    SCRIPT_FILE_PREFIX,
    TOKEN_FILE_PREFIX,
    load_options_file,
)
from github_api import GitHubClient, GitHubError
from templating import evaluate_template, template_values


# ============================================================================
# LOGGING SETUP
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


# ============================================================================
# ERRORS
# ============================================================================

class AutomatorError(Exception):
    """A repository could not be processed."""


class ConfigError(AutomatorError):
    """Options are missing or invalid; nothing has been processed."""


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def mask_secrets(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "****")
    return text


def run_command(
    cmd: List[str],
    cwd: Optional[str] = None,
    check: bool = True,
    capture_output: bool = False,
    env: Optional[Dict[str, str]] = None,
    secrets: Sequence[str] = (),
) -> Tuple[int, str, str]:
    """
    Execute a command and return the result.

    Args:
        cmd: Command to run as a list of strings
        cwd: Working directory for the command
        check: If True, raise CalledProcessError on non-zero exit code
        capture_output: If True, capture stdout and stderr
        env: Environment for the command (default: inherit)
        secrets: Strings to mask when the command is logged

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    logger.debug(f"Executing: {mask_secrets(' '.join(cmd), secrets)}")
    result = subprocess.run(
        cmd,
        cwd=cwd,
        check=False,
        capture_output=capture_output,
        text=True,
        env=env,
    )
    stdout = result.stdout if capture_output else ""
    stderr = result.stderr if capture_output else ""

    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(
            result.returncode, [mask_secrets(c, secrets) for c in cmd], stdout, stderr
        )

    return result.returncode, stdout, stderr


def split_on_commas(value: Optional[str]) -> Tuple[str, ...]:
    """Split "a, b,,c" into ("a", "b", "c")."""
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def current_branch(cwd: Optional[str] = None) -> str:
    _, stdout, _ = run_command(["git", "describe", "--contains", "--all", "HEAD"], cwd=cwd, capture_output=True)
    return stdout.strip()


def current_sha(cwd: Optional[str] = None) -> Tuple[str, str]:
    _, sha, _ = run_command(["git", "rev-parse", "HEAD"], cwd=cwd, capture_output=True)
    _, sha_short, _ = run_command(["git", "rev-parse", "--short", "HEAD"], cwd=cwd, capture_output=True)
    return sha.strip(), sha_short.strip()


def clone_url(org: str, repo: str) -> str:
    return f"https://{GITHUB_HOST}/{org}/{repo}.git"


def push_url(user: str, token: str, repo: str) -> str:
    return f"https://{user}:{token}@{GITHUB_HOST}/{user}/{repo}.git"


# ============================================================================
# SCRATCH STATE
# ============================================================================

class Scratch:
    """
    Per-run temporary state: the clone root plus optional token and script files.

    Everything is removed when the `with` block exits, however it exits.
    """

    def __init__(self):
        self.root: Optional[Path] = None
        self.token_file: Optional[str] = None
        self.script_file: Optional[str] = None

    def __enter__(self) -> "Scratch":
        self.root = Path(tempfile.mkdtemp(prefix=SCRATCH_DIR_PREFIX))
        logger.debug(f"Using scratch directory: {self.root}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def _write_temp(self, prefix: str, content: str) -> str:
        fd, path = tempfile.mkstemp(prefix=prefix)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content + "\n")
        return path

    def write_token(self, token: str) -> str:
        self.token_file = self._write_temp(TOKEN_FILE_PREFIX, token)
        os.chmod(self.token_file, 0o600)
        return self.token_file

    def write_script(self, command: str) -> str:
        self.script_file = self._write_temp(SCRIPT_FILE_PREFIX, command)
        return self.script_file

    def cleanup(self) -> None:
        if self.root is not None:
            shutil.rmtree(self.root, ignore_errors=True)
        for path in (self.token_file, self.script_file):
            if path and os.path.exists(path):
                os.remove(path)


def _exit_on_signal(signum, frame):
    raise SystemExit(128 + signum)


def install_signal_handlers() -> None:
    """Turn SIGTERM/SIGHUP into SystemExit so `with Scratch()` still cleans up."""
    for name in ("SIGTERM", "SIGHUP"):
        if hasattr(signal, name):
            signal.signal(getattr(signal, name), _exit_on_signal)


# ============================================================================
# OPTIONS
# ============================================================================

@dataclass(frozen=True)
class Options:
    org: str
    repos: Tuple[str, ...]
    branch: str
    sha: str
    sha_short: str
    modifier: str
    title_template: str
    match_title_template: str
    body_template: str
    labels: Tuple[str, ...]
    user: str
    email: str
    script_path: str
    script_args: Tuple[str, ...]
    token_path: str
    token: str = field(repr=False)
    dry_run: bool = False

    @property
    def push_branch(self) -> str:
        return f"{self.branch}-{self.modifier}"

    @property
    def source(self) -> str:
        return f"{self.user}:{self.push_branch}"

    @property
    def labels_json(self) -> str:
        return json.dumps(list(self.labels))


# Options that exclude each other; a value on the command line hides the
# partner's value from an options file.
EXCLUSIVE_OPTIONS = {
    "script_path": "cmd",
    "cmd": "script_path",
    "token_path": "token",
    "token": "token_path",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a script across repositories and open pull requests with the result",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--config", help="YAML file with option defaults (keys named like the long flags)")
    parser.add_argument("--branch", help="Branch to clone and target (default: current branch)")
    parser.add_argument("--sha", help="Commit SHA exposed to templates (default: current HEAD)")
    parser.add_argument("--org", help="Organization owning the repositories (required)")
    parser.add_argument("--repo", help="Comma-separated repository names (required)")
    parser.add_argument("--title", help=f"PR title and commit message template (default: {DEFAULT_TITLE_TEMPLATE})")
    parser.add_argument("--match-title", help="Title template used to find an existing PR (default: --title)")
    parser.add_argument("--body", help=f"PR body template (default: {DEFAULT_BODY_TEMPLATE})")
    parser.add_argument("--labels", help="Comma-separated labels to add to the PR")
    parser.add_argument("--user", help="GitHub login to push as (default: token owner)")
    parser.add_argument("--email", help="Commit email (default: token owner's email)")
    parser.add_argument("--modifier", help=f"Suffix of the pushed branch (default: {DEFAULT_MODIFIER})")

    script = parser.add_mutually_exclusive_group()
    script.add_argument("--script-path", help="Script to run in each repository")
    script.add_argument("--cmd", help="Inline command to run in each repository")
    parser.add_argument("--script-args", help="Argument string passed to the script as its single argument")

    token = parser.add_mutually_exclusive_group()
    token.add_argument("--token-path", help="File containing the GitHub token")
    token.add_argument("--token", help="GitHub token")

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Clone, run the script and commit locally; skip fork, push, PR and labels"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse flags, then fill unset ones from the --config file if given."""
    args = build_parser().parse_args(argv)
    if args.config:
        try:
            file_options = load_options_file(os.path.expanduser(args.config))
        except (OSError, ValueError) as e:
            raise ConfigError(f"unable to read options file: {e}") from e
        apply_file_options(args, file_options)
    return args


def apply_file_options(args: argparse.Namespace, file_options: Dict[str, Any]) -> None:
    for dest, value in file_options.items():
        if getattr(args, dest, None) is not None:
            continue
        partner = EXCLUSIVE_OPTIONS.get(dest)
        if partner and getattr(args, partner, None) is not None:
            continue
        setattr(args, dest, value)


def check_required(args: argparse.Namespace) -> None:
    """Validation that needs no network or filesystem access."""
    if not args.org:
        raise ConfigError("org is a required option")
    if not split_on_commas(args.repo):
        raise ConfigError("repo is a required option")


def resolve_options(
    args: argparse.Namespace,
    scratch: Scratch,
    client_factory: Optional[Callable[[str], GitHubClient]] = None,
    cwd: Optional[str] = None,
) -> Options:
    """
    Fill defaults and validate everything needed to process repositories.

    Inline --token / --cmd values are written to files owned by `scratch`.

    Raises:
        ConfigError: naming the missing or invalid option
    """
    check_required(args)

    # Token
    if args.token:
        token = args.token.strip()
        token_path = scratch.write_token(token)
    elif args.token_path:
        token_path = os.path.expanduser(args.token_path)
        try:
            with open(token_path, "r", encoding="utf-8") as f:
                token = f.read().strip()
        except OSError as e:
            raise ConfigError(f"token-path or token is a required option ({e})") from e
    else:
        token, token_path = "", ""
    if not token:
        raise ConfigError("token-path or token is a required option")

    # Script
    if args.cmd:
        script_path = scratch.write_script(args.cmd)
    elif args.script_path:
        script_path = os.path.realpath(os.path.expanduser(args.script_path))
    else:
        script_path = ""
    if not os.path.isfile(script_path):
        raise ConfigError("script-path or cmd is a required option")

    # The whole string reaches the script as a single argument
    script_args = (args.script_args,) if args.script_args else ()

    # Git defaults from the invoking checkout
    try:
        branch = args.branch or current_branch(cwd)
        if args.sha:
            sha, sha_short = args.sha, args.sha[:7]
        else:
            sha, sha_short = current_sha(cwd)
    except (subprocess.CalledProcessError, OSError) as e:
        raise ConfigError(f"unable to read branch/sha from the current directory, pass --branch and --sha ({e})") from e
    if not branch:
        raise ConfigError("branch is a required option")

    title_template = args.title or DEFAULT_TITLE_TEMPLATE
    match_title_template = args.match_title or title_template
    body_template = args.body or DEFAULT_BODY_TEMPLATE
    modifier = args.modifier or DEFAULT_MODIFIER

    # Identity
    user, email = args.user, args.email
    if not user or not email:
        try:
            identity = (client_factory or GitHubClient)(token).get_user()
        except GitHubError as e:
            raise ConfigError(f"unable to look up the authenticated GitHub user: {e}") from e
        user = user or identity.get("login")
        email = email or identity.get("email")
    if not user:
        raise ConfigError("unable to determine GitHub login, pass --user")
    if not email:
        raise ConfigError(f"GitHub returned no public email for {user}, pass --email")

    return Options(
        org=args.org,
        repos=split_on_commas(args.repo),
        branch=branch,
        sha=sha,
        sha_short=sha_short,
        modifier=modifier,
        title_template=title_template,
        match_title_template=match_title_template,
        body_template=body_template,
        labels=split_on_commas(args.labels),
        user=user,
        email=email,
        script_path=script_path,
        script_args=script_args,
        token_path=token_path,
        token=token,
        dry_run=bool(getattr(args, "dry_run", False)),
    )


# ============================================================================
# GIT OPERATIONS
# ============================================================================

def clone_repository(options: Options, repo: str, clone_dir: Path) -> Path:
    """Clone only the target branch of org/repo into clone_dir/repo."""
    repo_path = clone_dir / repo
    logger.info(f"Cloning {options.org}/{repo}@{options.branch}...")
    run_command(
        ["git", "clone", "--single-branch", "--branch", options.branch,
         clone_url(options.org, repo), str(repo_path)],
        capture_output=True,
    )
    return repo_path


def run_script(options: Options, repo: str, repo_path: Path, root_dir: str) -> None:
    """Run the user script inside the clone; output goes to the terminal."""
    env = {
        **os.environ,
        **template_values(options, repo),
        "AUTOMATOR_ROOT_DIR": root_dir,
        "AUTOMATOR_REPO_DIR": str(repo_path),
    }
    run_command(["bash", options.script_path, *options.script_args], cwd=str(repo_path), env=env)


def stage_changes(repo_path: Path) -> bool:
    """Stage everything; return True if the index differs from HEAD."""
    run_command(["git", "add", "--all"], cwd=str(repo_path), capture_output=True)
    exit_code, _, _ = run_command(
        ["git", "diff", "--cached", "--quiet", "--exit-code"],
        cwd=str(repo_path),
        check=False,
        capture_output=True
    )
    return exit_code != 0


def commit_changes(options: Options, repo_path: Path, message: str) -> None:
    identity = f"{options.user} <{options.email}>"
    logger.info(f"Committing changes: {message}")
    run_command(
        ["git", "-c", f"user.name={options.user}", "-c", f"user.email={options.email}",
         "commit", "--message", message, f"--author={identity}"],
        cwd=str(repo_path),
        capture_output=True
    )
    _, stdout, _ = run_command(["git", "show", "--shortstat"], cwd=str(repo_path), capture_output=True)
    for line in stdout.strip().splitlines():
        logger.info(f"      {line}")


def push_branch(options: Options, repo: str, repo_path: Path) -> None:
    logger.info(f"Force-pushing to {options.user}/{repo}:{options.push_branch}...")
    run_command(
        ["git", "push", "--force", push_url(options.user, options.token, repo), f"HEAD:{options.push_branch}"],
        cwd=str(repo_path),
        capture_output=True,
        secrets=[options.token]
    )


# ============================================================================
# PULL REQUESTS
# ============================================================================

def create_pull_request(options: Options, repo: str, title: str, match_title: str, body: str) -> str:
    """
    Create or update the PR through pr-creator.

    Returns:
        PR number printed by pr-creator
    """
    cmd = [
        PR_CREATOR_COMMAND,
        f"--github-token-path={options.token_path}",
        f"--org={options.org}",
        f"--repo={repo}",
        f"--branch={options.branch}",
        f"--title={title}",
        f'--match-title="{match_title}"',
        f"--body={body}",
        f"--source={options.source}",
        "--confirm",
    ]
    _, stdout, stderr = run_command(cmd, capture_output=True)
    if stderr.strip():
        logger.debug(stderr.strip())
    pull_request = stdout.strip()
    if not pull_request:
        raise AutomatorError(f"{PR_CREATOR_COMMAND} did not return a PR number")
    return pull_request


def add_labels(options: Options, client: GitHubClient, repo: str, pull_request: str) -> bool:
    """Label the PR; returns False when no labels are configured."""
    if not options.labels:
        return False
    logger.info(f"Adding labels {options.labels_json} to {options.org}/{repo}#{pull_request}")
    client.add_labels(options.org, repo, pull_request, list(options.labels))
    return True


# ============================================================================
# STEP PROGRESS DISPLAY
# ============================================================================

def step_progress(step_num: int, total: int, label: str, status: str = "...") -> None:
    """Print a single step progress line (e.g. '  [1/7] Clone ✓')."""
    logger.info(f"  [{step_num}/{total}] {label} {status}")


# ============================================================================
# MAIN PROCESSING FUNCTION
# ============================================================================

STEPS = ("Fork", "Clone", "Script", "Commit", "Push", "PR", "Labels")

# State reached after each step completes
STEP_STATES = ("forked", "cloned", "scripted", "committed", "pushed", "pr-created", "labeled")


def process_repository(
    options: Options,
    repo: str,
    clone_dir: Path,
    client: GitHubClient,
    root_dir: str,
    now=None,
) -> Dict[str, Any]:
    """
    Process a single repository: fork, clone, run script, commit, push, PR, labels.

    Never raises for operational errors; they are reported in the result.

    Returns:
        Dictionary with processing results
    """
    result = {
        "repo": repo,
        "status": "unknown",
        "state": "pending",
        "error": None,
        "exit_code": 0,
        "pr": None,
    }
    total = len(STEPS)
    values = template_values(options, repo)
    title = evaluate_template(options.title_template, values, now)
    match_title = evaluate_template(options.match_title_template, values, now)
    body = evaluate_template(options.body_template, values, now)

    step = 0

    def done(status: str = "✓") -> None:
        step_progress(step + 1, total, STEPS[step], status)
        result["state"] = STEP_STATES[step]

    try:
        logger.info(f"  ┌─ {options.org}/{repo}")

        if options.dry_run:
            done("⊘ dry run")
        else:
            done("✓" if client.fork(options.org, repo) else "⊘ skipped")

        step = 1
        repo_path = clone_repository(options, repo, clone_dir)
        done()

        step = 2
        run_script(options, repo, repo_path, root_dir)
        if not stage_changes(repo_path):
            done("⊘ no changes")
            result["status"] = "skipped"
            logger.info("  └─ Nothing to commit")
            return result
        done()

        step = 3
        commit_changes(options, repo_path, title)
        done()

        if options.dry_run:
            for skipped in range(4, total):
                step_progress(skipped + 1, total, STEPS[skipped], "⊘ dry run")
            result["status"] = "success"
            logger.info("  └─ Done (dry run)")
            return result

        step = 4
        push_branch(options, repo, repo_path)
        done()

        step = 5
        result["pr"] = create_pull_request(options, repo, title, match_title, body)
        done(f"✓ #{result['pr']}")

        step = 6
        done("✓" if add_labels(options, client, repo, result["pr"]) else "⊘ none")

        result["status"] = "success"
        logger.info("  └─ Done")
        return result

    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
        return _failed(result, step, total, shell_exit_code(e.returncode), detail)
    except (GitHubError, AutomatorError, OSError) as e:
        return _failed(result, step, total, 1, str(e))


def shell_exit_code(returncode: int) -> int:
    """Map a subprocess return code to what a shell reports (signals as 128+N)."""
    if returncode < 0:
        return 128 - returncode
    return returncode or 1


def _failed(result: Dict[str, Any], step: int, total: int, exit_code: int, detail: str) -> Dict[str, Any]:
    step_progress(step + 1, total, STEPS[step], "✗ failed")
    logger.error(f"  └─ {STEPS[step]} failed for {result['repo']}: {detail}")
    result["status"] = "failed"
    result["state"] = f"failed({STEPS[step].lower()})"
    result["error"] = f"{STEPS[step]} failed: {detail}"
    result["exit_code"] = exit_code
    return result


def run_batch(
    options: Options,
    clone_dir: Path,
    client: GitHubClient,
    root_dir: str,
    process: Callable[..., Dict[str, Any]] = process_repository,
) -> List[Dict[str, Any]]:
    """Process every repository in order and collect the results."""
    results = []
    for i, repo in enumerate(options.repos, 1):
        logger.info("=" * 60)
        logger.info(f"  [{i}/{len(options.repos)}] {options.org}/{repo}")
        result = process(options, repo, clone_dir, client, root_dir)
        results.append(result)
        if result["status"] == "failed":
            logger.error(f"✗ Failed to process {repo}: {result.get('error', 'Unknown error')}")
        elif result["status"] == "skipped":
            logger.info(f"⊘ No changes for {repo}")
        else:
            logger.info(f"✓ Successfully processed {repo}")
    return results


def aggregate_exit_code(results: List[Dict[str, Any]]) -> int:
    """Exit code of the last failed repository, or 0 when none failed."""
    return reduce(
        lambda code, r: (r.get("exit_code") or 1) if r["status"] == "failed" else code,
        results,
        0,
    )


def log_summary(options: Options, results: List[Dict[str, Any]]) -> None:
    summary = defaultdict(int)
    for result in results:
        summary[result["status"]] += 1

    logger.info("")
    logger.info("=" * 60)
    logger.info("SUMMARY REPORT")
    logger.info("=" * 60)
    logger.info(f"Total repositories: {len(results)}")
    logger.info(f"Successful: {summary['success']}")
    logger.info(f"No changes: {summary['skipped']}")
    logger.info(f"Failed: {summary['failed']}")

    for result in results:
        if result["status"] == "success" and result.get("pr"):
            logger.info(f"  - {options.org}/{result['repo']}#{result['pr']}")
    for result in results:
        if result["status"] == "failed":
            logger.error(f"  - {result['repo']}: {result.get('error', 'Unknown error')}")


# ============================================================================
# MAIN FUNCTION
# ============================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    try:
        args = parse_args(argv)
        if args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        check_required(args)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    install_signal_handlers()
    root_dir = os.getcwd()

    try:
        with Scratch() as scratch:
            try:
                options = resolve_options(args, scratch)
            except ConfigError as e:
                logger.error(str(e))
                return 1

            if options.dry_run:
                logger.info("=" * 60)
                logger.info("DRY RUN MODE - nothing will be pushed")
                logger.info("=" * 60)

            client = GitHubClient(options.token)
            results = run_batch(options, scratch.root, client, root_dir)
    except KeyboardInterrupt:
        logger.error("Interrupted, scratch state removed")
        return 130

    log_summary(options, results)
    return aggregate_exit_code(results)


if __name__ == "__main__":
    sys.exit(main())
