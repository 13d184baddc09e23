"""Markdown session documents.

A project's ``latest`` document is a front-matter header followed by one block
per question::

    ---

    ## Session: 2026-10-19 14:03:11

    **Title**: Deploy now?

    ### User Input <!-- ... -->
    <the human types here>
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Optional, Tuple

from askme import __version__

INPUT_SECTION_MARKER = "### User Input"
INPUT_HINT = "<!-- ✏️ Type below | 💾 Ctrl+S to save | ❌ Ctrl+W to close -->"
SESSION_HEADING = "## Session: "

_SESSION_DATE = re.compile(r"^## Session: (\d{4}-\d{2}-\d{2})", re.MULTILINE)


def format_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")


def today(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y-%m-%d")


def unescape_newlines(text: str) -> str:
    """Turn literal ``\\n`` into newlines and strip trailing blanks per line."""
    return "\n".join(line.rstrip() for line in text.replace("\\n", "\n").split("\n"))


def session_block(title: str, context: Optional[str] = None, *, now: Optional[datetime] = None) -> str:
    timestamp = format_timestamp(now)
    title_text = unescape_newlines(title or "").strip() or f"Session {timestamp}"
    context_text = unescape_newlines(context) if context else ""
    context_section = f"\n**Context**:\n{context_text}\n" if context_text else ""
    return (
        "\n---\n"
        "\n"
        f"{SESSION_HEADING}{timestamp}\n"
        "\n"
        f"**Title**: {title_text}\n"
        f"{context_section}"
        "\n"
        f"{INPUT_SECTION_MARKER} {INPUT_HINT}\n"
        "\n"
    )


def file_header(cwd: str, *, now: Optional[datetime] = None) -> str:
    return (
        "<!-- markdownlint-disable -->\n"
        "---\n"
        f'created: "{format_timestamp(now)}"\n'
        f'version: "{__version__}"\n'
        f'cwd: "{cwd}"\n'
        "---\n"
        "\n"
        f"# Project: {cwd}\n"
    )


def _input_line(content: str) -> int:
    return len(content.split("\n"))


def generate_new_document(
    cwd: str, title: str, context: Optional[str] = None, *, now: Optional[datetime] = None
) -> Tuple[str, int]:
    """Return ``(content, input_line)`` for a brand new ``latest`` document."""
    content = file_header(cwd, now=now) + session_block(title, context, now=now)
    return content, _input_line(content)


def append_session_block(
    existing: str, title: str, context: Optional[str] = None, *, now: Optional[datetime] = None
) -> Tuple[str, int]:
    """Return ``(content, input_line)`` with a new block appended to ``existing``."""
    content = existing.rstrip() + "\n" + session_block(title, context, now=now)
    return content, _input_line(content)


def extract_user_input(content: str) -> str:
    """Text typed under the last ``### User Input`` marker, without the hint."""
    sections = content.split(INPUT_SECTION_MARKER)
    if len(sections) < 2:
        return ""
    last = sections[-1].replace(INPUT_HINT, "", 1)
    end = last.find("\n---")
    if end != -1:
        last = last[:end]
    return last.strip()


def is_input_empty(text: Optional[str]) -> bool:
    return not text or not text.strip()


def first_session_date(content: str) -> Optional[str]:
    match = _SESSION_DATE.search(content)
    return match.group(1) if match else None


def count_sessions(content: str) -> int:
    return len(_SESSION_DATE.findall(content))
