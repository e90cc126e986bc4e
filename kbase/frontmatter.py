"""
Markdown files with a YAML metadata block.

    ---
    id: 3
    title: Fix login
    tags:
    - auth
    ---

    Body text...
"""

import logging
import re
from datetime import date, datetime, timezone
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r'\A---\r?\n(.*?)(?:\r?\n)?^---[ \t]*(?:\r?\n|\Z)', re.DOTALL | re.MULTILINE)


def _coerce(value: Any) -> Any:
    """Turn YAML-native dates back into the strings the rest of kbase uses.

    Hand-edited files may carry unquoted dates and timestamps, which
    yaml.safe_load turns into date/datetime objects.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
            return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_coerce(v) for v in value]
    return value


def parse(text: str) -> tuple[dict[str, Any], str]:
    """
    Split a file into its metadata block and body.

    A file without a metadata block is all body. A block that is not a
    YAML mapping is logged and treated as empty metadata.

    Returns:
        (metadata, body) tuple
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text

    body = text[match.end():]
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning("Malformed metadata block: %s", e)
        return {}, body

    if data is None:
        return {}, body
    if not isinstance(data, dict):
        logger.warning("Metadata block is not a mapping (got %s)", type(data).__name__)
        return {}, body
    return {str(k): _coerce(v) for k, v in data.items()}, body


def render(metadata: dict[str, Any], body: str) -> str:
    """Render metadata and body into file text. Key order is preserved."""
    block = yaml.safe_dump(
        metadata,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"---\n{block}---\n\n{body}"
