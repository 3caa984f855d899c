"""Tests for emoji/markdown removal ahead of speech synthesis."""

import pytest

from src.speech.sanitizer import sanitize_for_tts, strip_emojis, strip_markdown

DICE = "\U0001F3B2"
GAME = "\U0001F3AE"
JOKER = "\U0001F0CF"
TARGET = "\U0001F3AF"
STAR = "\U0001F31F"
TROPHY = "\U0001F3C6"
SPADE = "♠️"
PAWN = "♟️"


def test_strip_emojis_leaves_plain_text_untouched():
    text = "This is a regular sentence without emojis."
    assert strip_emojis(text) == text


def test_strip_emojis_removes_trailing_emoji():
    assert strip_emojis(f"Great game! {DICE}") == "Great game!"


def test_strip_emojis_removes_all_and_keeps_spacing():
    text = f"{GAME} Board games are fun! {DICE}{JOKER} Let's play! {TARGET}"
    assert strip_emojis(text) == "Board games are fun!  Let's play!"


def test_strip_emojis_in_middle_of_sentence():
    assert strip_emojis(f"I recommend {STAR} Catan {STAR} for beginners.") == (
        "I recommend  Catan  for beginners."
    )


def test_strip_emojis_handles_symbols_with_variation_selectors():
    result = strip_emojis(f"{DICE} Dice games {SPADE} Card games {PAWN} Strategy games {TROPHY} Winners")
    for emoji in (DICE, SPADE, PAWN, TROPHY, "️"):
        assert emoji not in result
    assert "Strategy games" in result


@pytest.mark.parametrize("value", [None, ""])
def test_blank_input_is_returned_as_is(value):
    assert strip_emojis(value) == value
    assert strip_markdown(value) == value
    assert sanitize_for_tts(value) == value


def test_strip_markdown_headers():
    assert strip_markdown("# Game Recommendations\n\nHere are some games.") == (
        "Game Recommendations\n\nHere are some games."
    )
    result = strip_markdown("# Main Title\n## Subtitle\n### Section\nContent here.")
    assert "#" not in result
    assert "Subtitle" in result


@pytest.mark.parametrize(
    "text, expected",
    [
        ("This is **bold** text and also **important**.", "This is bold text and also important."),
        ("This is *italic* text.", "This is italic text."),
        ("This is __bold__ and _italic_.", "This is bold and italic."),
        ("Very ***strong*** claim.", "Very strong claim."),
    ],
)
def test_strip_markdown_emphasis(text, expected):
    assert strip_markdown(text) == expected


def test_strip_markdown_lists_links_and_code():
    text = (
        "Top picks:\n"
        "- **Catan** for trading\n"
        "* [Azul](https://example.com/azul) for patterns\n"
        "1. `Splendor` for engines\n"
        "```\nignored code\n```\n"
        "Enjoy!"
    )

    result = strip_markdown(text)

    assert result == "Top picks:\nCatan for trading\nAzul for patterns\nSplendor for engines\n\nEnjoy!"


def test_sanitize_for_tts_strips_emojis_then_markdown():
    text = f"## Great choice! {DICE}\n\n**Catan** is a classic {TROPHY}  game."
    assert sanitize_for_tts(text) == "Great choice!\n\nCatan is a classic game."
