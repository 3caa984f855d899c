"""
Text clean-up before speech synthesis.

Agent replies are written for a chat UI: emojis and markdown read badly
aloud, so both are stripped while the underlying words are kept.
"""

import re

_EMOJI = re.compile(
    "["
    "\U0001F000-\U0010FFFF"  # supplementary planes (most emojis)
    "\u2600-\u26FF"  # misc symbols
    "\u2700-\u27BF"  # dingbats
    "\u2300-\u23FF"  # misc technical
    "\u2190-\u21FF"  # arrows
    "\u25A0-\u25FF"  # geometric shapes
    "\uFE00-\uFE0F"  # variation selectors
    "\u200D"  # zero-width joiner
    "]"
)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_HEADER = re.compile(r"^#{1,6}\s*", re.MULTILINE)
_BOLD_ITALIC = re.compile(r"(\*{1,3}|_{1,3})([^*_]+)\1")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_BULLET = re.compile(r"^[ \t]*[-*+]\s+", re.MULTILINE)
_NUMBERED = re.compile(r"^[ \t]*\d+\.\s+", re.MULTILINE)
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_MULTI_NEWLINE = re.compile(r"\n{3,}")
_MULTI_SPACE = re.compile(r" {2,}")
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)


def strip_emojis(text: str | None) -> str | None:
    if not text:
        return text
    return _EMOJI.sub("", text).strip()


def strip_markdown(text: str | None) -> str | None:
    if not text:
        return text

    result = _CODE_BLOCK.sub("", text)
    result = _HEADER.sub("", result)
    # nested emphasis (***x***, **_x_**) needs more than one pass
    for _ in range(3):
        result = _BOLD_ITALIC.sub(r"\2", result)
    result = _INLINE_CODE.sub(r"\1", result)
    result = _BULLET.sub("", result)
    result = _NUMBERED.sub("", result)
    result = _LINK.sub(r"\1", result)
    result = _MULTI_NEWLINE.sub("\n\n", result)
    result = _MULTI_SPACE.sub(" ", result)
    result = _TRAILING_SPACE.sub("", result)
    return result.strip()


def sanitize_for_tts(text: str | None) -> str | None:
    """Strip emojis, then markdown."""
    if not text:
        return text
    return strip_markdown(strip_emojis(text))
