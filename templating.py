#!/usr/bin/env python3
"""
Template evaluation for PR titles, bodies and commit messages.

Templates use shell-style references: $NAME or ${NAME} are looked up in an
explicit mapping, and $(date ...) is evaluated at substitution time. Names that
are not in the mapping expand to an empty string, as an unset shell variable
would.
"""

import logging
import re
import shlex
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

# Order matters: command substitution first so "$(" is never read as a variable
_TOKEN_RE = re.compile(
    r"\$\((?P<cmd>[^()]*)\)"
    r"|\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}"
    r"|\$(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
)

# date -I precision -> isoformat timespec
_ISO_PRECISION = {
    "date": None,
    "hours": "hours",
    "minutes": "minutes",
    "seconds": "seconds",
    "ns": "microseconds",
}


def template_values(options, repo: str) -> Dict[str, str]:
    """Build the variables visible to templates for one repository."""
    return {
        "AUTOMATOR_ORG": options.org,
        "AUTOMATOR_REPO": repo,
        "AUTOMATOR_BRANCH": options.branch,
        "AUTOMATOR_SHA": options.sha,
        "AUTOMATOR_SHA_SHORT": options.sha_short,
        "AUTOMATOR_MODIFIER": options.modifier,
    }


def _format_date(args, now: datetime) -> str:
    """
    Evaluate the arguments of a `date` command against `now`.

    Supports -u/--utc, -I[PRECISION]/--iso-8601[=PRECISION] and +FORMAT.
    Raises ValueError for anything else.
    """
    utc = False
    iso = None
    fmt = None
    for arg in args:
        if arg.startswith("+"):
            fmt = arg[1:]
        elif arg in ("-u", "--utc", "--universal"):
            utc = True
        elif arg.startswith("--iso-8601"):
            iso = arg.partition("=")[2] or "date"
        elif arg.startswith("-") and not arg.startswith("--"):
            # combined short flags, e.g. -uIseconds
            flags = arg[1:]
            while flags:
                if flags[0] == "u":
                    utc = True
                    flags = flags[1:]
                elif flags[0] == "I":
                    iso = flags[1:] or "date"
                    flags = ""
                else:
                    raise ValueError(f"unsupported date flag: -{flags[0]}")
        else:
            raise ValueError(f"unsupported date argument: {arg}")

    moment = now.astimezone(timezone.utc) if utc else now.astimezone()

    if iso is not None:
        if iso not in _ISO_PRECISION:
            raise ValueError(f"unsupported date precision: {iso}")
        timespec = _ISO_PRECISION[iso]
        if timespec is None:
            return moment.date().isoformat()
        return moment.isoformat(timespec=timespec)
    if fmt is not None:
        return moment.strftime(fmt)
    return moment.strftime("%a %b %d %H:%M:%S %Z %Y")


def _evaluate_command(command: str, now: Callable[[], datetime]) -> str:
    try:
        argv = shlex.split(command)
    except ValueError as e:
        logger.warning(f"Cannot parse template expression $({command}): {e}")
        return ""

    if not argv or argv[0] != "date":
        logger.warning(f"Unsupported template expression $({command}), using empty string")
        return ""

    try:
        return _format_date(argv[1:], now())
    except ValueError as e:
        logger.warning(f"Unsupported template expression $({command}): {e}")
        return ""


def evaluate_template(
    template: str,
    values: Mapping[str, str],
    now: Optional[Callable[[], datetime]] = None,
) -> str:
    """
    Substitute variables and date expressions in a template.

    Args:
        template: Raw template text
        values: Variables available to the template
        now: Clock used for $(date ...); defaults to the current UTC time

    Returns:
        The substituted string
    """
    clock = now or (lambda: datetime.now(timezone.utc))

    def replace(match: "re.Match") -> str:
        if match.group("cmd") is not None:
            return _evaluate_command(match.group("cmd"), clock)
        name = match.group("braced") or match.group("name")
        return values.get(name) or ""

    return _TOKEN_RE.sub(replace, template)
