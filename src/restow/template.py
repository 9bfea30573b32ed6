"""
Storage template compilation and rendering.

A template is a relative path containing {{token}} placeholders, e.g.

    {{y}}/{{y}}-{{MM}}-{{dd}}/{{filename}}

Compilation validates every token up front; rendering is a pure function of
the TemplateContext, so the same asset metadata always yields the same path.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from restow.errors import TemplateValidationError
from restow.model import AssetType

YEAR_TOKENS = ["y", "yy"]
MONTH_TOKENS = ["M", "MM", "MMM", "MMMM"]
WEEK_TOKENS = ["W", "WW"]
DAY_TOKENS = ["d", "dd"]
HOUR_TOKENS = ["h", "hh", "H", "HH"]
MINUTE_TOKENS = ["m", "mm"]
SECOND_TOKENS = ["s", "ss", "SSS"]
DATE_TOKENS = (
    YEAR_TOKENS + MONTH_TOKENS + WEEK_TOKENS + DAY_TOKENS
    + HOUR_TOKENS + MINUTE_TOKENS + SECOND_TOKENS
)
ASSET_TOKENS = ["filename", "ext", "filetype", "filetypefull", "assetId", "album"]
SUPPORTED_TOKENS = frozenset(DATE_TOKENS + ASSET_TOKENS)

PRESET_TEMPLATES = [
    "{{y}}/{{y}}-{{MM}}-{{dd}}/{{filename}}",
    "{{y}}/{{MM}}-{{dd}}/{{filename}}",
    "{{y}}/{{MMMM}}-{{dd}}/{{filename}}",
    "{{y}}/{{MM}}/{{filename}}",
    "{{y}}/{{MMM}}/{{filename}}",
    "{{y}}/{{MMMM}}/{{filename}}",
    "{{y}}/{{MM}}/{{dd}}/{{filename}}",
    "{{y}}/{{MMMM}}/{{dd}}/{{filename}}",
    "{{y}}/{{y}}-{{MM}}/{{y}}-{{MM}}-{{dd}}/{{filename}}",
    "{{y}}-{{MM}}-{{dd}}/{{filename}}",
    "{{y}}-{{MMM}}-{{dd}}/{{filename}}",
    "{{y}}-{{MMMM}}-{{dd}}/{{filename}}",
    "{{y}}/{{y}}-{{MM}}/{{filename}}",
    "{{y}}/{{y}}-{{WW}}/{{filename}}",
    "{{y}}/{{y}}-{{MM}}-{{dd}}/{{assetId}}",
    "{{y}}/{{y}}-{{MM}}/{{assetId}}",
    "{{y}}/{{y}}-{{WW}}/{{assetId}}",
    "{{album}}/{{filename}}",
]

# English names; rendering must not depend on the process locale.
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
)

_TOKEN_RE = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")
_MULTI_SLASH_RE = re.compile(r"/{2,}")
_UNSAFE_CHARS_RE = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')

_FILETYPE = {
    AssetType.IMAGE: ("IMG", "IMAGE"),
    AssetType.VIDEO: ("VID", "VIDEO"),
    AssetType.AUDIO: ("AUD", "AUDIO"),
    AssetType.OTHER: ("OTHER", "OTHER"),
}


@dataclass(frozen=True)
class TemplateContext:
    """Values available to template tokens for one asset.

    Derived from the asset and its owner's configuration; never persisted.
    """
    owner_id: str
    timestamp: datetime
    filename: str
    extension: str
    asset_id: str
    asset_type: AssetType = AssetType.IMAGE
    storage_label: Optional[str] = None
    album_name: Optional[str] = None


def sanitize_segment(value: Optional[str]) -> str:
    """Make a value safe to use as (part of) a single path segment."""
    if not value:
        return ""
    cleaned = _UNSAFE_CHARS_RE.sub("_", value).strip()
    if not cleaned.strip("."):
        return ""
    return cleaned


def format_date_token(token: str, dt: datetime) -> str:
    if token == "y":
        return str(dt.year)
    if token == "yy":
        return f"{dt.year % 100:02d}"
    if token == "M":
        return str(dt.month)
    if token == "MM":
        return f"{dt.month:02d}"
    if token == "MMM":
        return MONTH_NAMES[dt.month - 1][:3]
    if token == "MMMM":
        return MONTH_NAMES[dt.month - 1]
    if token in ("W", "WW"):
        week = dt.isocalendar()[1]
        return str(week) if token == "W" else f"{week:02d}"
    if token == "d":
        return str(dt.day)
    if token == "dd":
        return f"{dt.day:02d}"
    if token in ("h", "hh"):
        hour = dt.hour % 12 or 12
        return str(hour) if token == "h" else f"{hour:02d}"
    if token == "H":
        return str(dt.hour)
    if token == "HH":
        return f"{dt.hour:02d}"
    if token == "m":
        return str(dt.minute)
    if token == "mm":
        return f"{dt.minute:02d}"
    if token == "s":
        return str(dt.second)
    if token == "ss":
        return f"{dt.second:02d}"
    if token == "SSS":
        return f"{dt.microsecond // 1000:03d}"
    raise KeyError(token)


class CompiledTemplate:
    """A validated template, split into literal text and token parts."""

    def __init__(self, source: str, parts: List[Tuple[bool, str]]):
        self.source = source
        self._parts = parts
        self.tokens = tuple(value for is_token, value in parts if is_token)

    @property
    def uses_album(self) -> bool:
        return "album" in self.tokens

    def _substitute(self, token: str, context: TemplateContext) -> str:
        if token in DATE_TOKENS:
            return format_date_token(token, context.timestamp)
        if token == "filename":
            return context.filename
        if token == "ext":
            return context.extension
        if token == "filetype":
            return _FILETYPE[AssetType(context.asset_type)][0]
        if token == "filetypefull":
            return _FILETYPE[AssetType(context.asset_type)][1]
        if token == "assetId":
            return context.asset_id
        if token == "album":
            return sanitize_segment(context.album_name)
        raise KeyError(token)

    def render(self, context: TemplateContext) -> str:
        """Render to a relative, slash-joined path without extension."""
        rendered = "".join(
            self._substitute(value, context) if is_token else value
            for is_token, value in self._parts
        )
        rendered = _MULTI_SLASH_RE.sub("/", rendered)
        return rendered.lstrip("/")

    def __repr__(self) -> str:
        return f"CompiledTemplate({self.source!r})"


class TemplateEngine:
    """Compiles storage templates; see PRESET_TEMPLATES for examples."""

    @staticmethod
    def compile(template: str) -> CompiledTemplate:
        """
        Validate a template and return its compiled form.

        Raises:
            TemplateValidationError: naming the first unrecognized token, or
                describing why the template cannot produce a relative path.
        """
        if template is None or not str(template).strip():
            raise TemplateValidationError("Invalid storage template: template is empty")
        template = str(template)
        if template.startswith("/"):
            raise TemplateValidationError(
                f"Invalid storage template: must be a relative path: {template!r}"
            )

        parts: List[Tuple[bool, str]] = []
        pos = 0
        for match in _TOKEN_RE.finditer(template):
            token = match.group(1)
            if token not in SUPPORTED_TOKENS:
                raise TemplateValidationError(
                    f"Invalid storage template: unknown token {{{{{token}}}}}",
                    token=token,
                )
            literal = template[pos:match.start()]
            if literal:
                parts.append((False, literal))
            parts.append((True, token))
            pos = match.end()
        tail = template[pos:]
        if tail:
            parts.append((False, tail))

        for is_token, value in parts:
            if not is_token and ("{{" in value or "}}" in value):
                raise TemplateValidationError(
                    f"Invalid storage template: unbalanced braces in {template!r}"
                )

        if not any(is_token for is_token, _ in parts):
            raise TemplateValidationError(
                f"Invalid storage template: no tokens in {template!r}"
            )

        return CompiledTemplate(template, parts)

    @staticmethod
    def validate(template: str) -> None:
        """Raise TemplateValidationError unless template compiles."""
        TemplateEngine.compile(template)
