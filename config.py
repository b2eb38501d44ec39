#!/usr/bin/env python3
"""
Configuration file for Automator

This file contains the default settings used by automator.py and pr_creator.py.
Command-line flags always win, then values from an optional YAML options file
(--config), then the values below.
"""

import os
from typing import Any, Dict

import yaml

# ============================================================================
# GITHUB CONFIGURATION
# ============================================================================

# REST API root and the host used for clone / push URLs
GITHUB_API_URL = os.environ.get("AUTOMATOR_GITHUB_API_URL", "https://api.github.com")
GITHUB_HOST = os.environ.get("AUTOMATOR_GITHUB_HOST", "github.com")

# Timeout (seconds) for every GitHub API request
API_TIMEOUT = 30

# ============================================================================
# BRANCH & PR CONFIGURATION
# ============================================================================

# Suffix of the pushed branch: <branch>-<modifier>
DEFAULT_MODIFIER = "automator"

# Templates are evaluated once per repository; see templating.py for syntax
DEFAULT_TITLE_TEMPLATE = (
    "Automator: update $AUTOMATOR_ORG/$AUTOMATOR_REPO@$AUTOMATOR_BRANCH-$AUTOMATOR_MODIFIER"
)
DEFAULT_BODY_TEMPLATE = "Generated by Automator - $(date -uIseconds)"

# Command used to create or update the pull request (see pr_creator.py)
PR_CREATOR_COMMAND = os.environ.get("AUTOMATOR_PR_CREATOR", "pr-creator")

# Prefixes for the per-run scratch state
SCRATCH_DIR_PREFIX = "ci-"
TOKEN_FILE_PREFIX = "token-"
SCRIPT_FILE_PREFIX = "script-"

# ============================================================================
# OPTIONS FILE
# ============================================================================

# Keys accepted in a --config YAML file (same names as the long flags)
OPTION_KEYS = (
    "branch",
    "sha",
    "org",
    "repo",
    "title",
    "match-title",
    "body",
    "labels",
    "user",
    "email",
    "modifier",
    "script-path",
    "script-args",
    "cmd",
    "token-path",
)


def load_options_file(path: str) -> Dict[str, Any]:
    """
    Read option defaults from a YAML file.

    Lists are joined with commas so `repo:` and `labels:` may be written either
    as "a,b" or as a YAML sequence. Unknown keys are rejected.

    Args:
        path: Path to the YAML file

    Returns:
        Mapping of argparse dest names (dashes replaced by underscores) to values
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of option names to values")

    options = {}
    for key, value in data.items():
        if key not in OPTION_KEYS:
            raise ValueError(f"{path}: unknown option '{key}'")
        if isinstance(value, list):
            value = ",".join(str(v) for v in value)
        options[key.replace("-", "_")] = None if value is None else str(value)
    return options


# ============================================================================
# CONFIGURATION NOTES
# ============================================================================
#
# Template variables (resolved per repository):
# - $AUTOMATOR_ORG, $AUTOMATOR_REPO, $AUTOMATOR_BRANCH
# - $AUTOMATOR_SHA, $AUTOMATOR_SHA_SHORT, $AUTOMATOR_MODIFIER
# - $(date -uIseconds) and other `date` forms, evaluated when substituted
#
# The user script also sees $AUTOMATOR_ROOT_DIR (where automator was started)
# and $AUTOMATOR_REPO_DIR (the clone it runs in).
#
# Example options file:
#
#   org: istio
#   repo: [api, istio, proxy]
#   labels: [release-notes-none]
#   cmd: make gen
#   token-path: ~/.github-token
