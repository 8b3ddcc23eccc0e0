"""Text processing helpers."""

from __future__ import annotations

import re

TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
BLANK_RUN_RE = re.compile(r"\n{3,}")


def clean_extracted(text: str | None) -> str:
    """Normalise line endings, drop trailing blanks, keep paragraph breaks."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    text = TRAILING_SPACE_RE.sub("\n", text)
    return BLANK_RUN_RE.sub("\n\n", text).strip()
