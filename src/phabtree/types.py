"""Validation callbacks for phab command-line arguments."""

import re
from typing import Optional

import typer

TASK_ID_PATTERN = re.compile(r"^T?(\d+)$")

URL_PATTERN = re.compile(
    r"^https?://"  # http:// or https://
    r"(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,63}\.?|"  # domain...
    r"localhost|"  # localhost...
    r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"  # ...or ip
    r"(?::\d+)?"  # optional port
    r"(?:/?|[/?]\S+)$", re.IGNORECASE  # path
)


def parse_task_id(value: str) -> str:
    """Maniphest task id, accepted as '1234' or 'T1234'. Returns the digits."""
    match = TASK_ID_PATTERN.match(str(value).strip())
    if not match:
        raise typer.BadParameter(f"{value} is not a valid task id (expected e.g. T1234)")
    return match.group(1)


def parse_host(value: Optional[str]) -> Optional[str]:
    """Phabricator base URL, returned without a trailing slash."""
    if value is None:
        return None
    if not URL_PATTERN.match(value):
        raise typer.BadParameter(f"{value} is not a valid URL")
    return value.rstrip("/")
