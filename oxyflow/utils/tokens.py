"""Cheap token estimate used for memory budgeting."""

import math


def _is_cjk(ch: str) -> bool:
    return "\u4e00" <= ch <= "\u9fff"


def estimate_tokens(text: str) -> int:
    """Estimate the token count of ``text`` by character class.

    Each Chinese character counts 1.5, each whitespace-separated word that
    contains a letter counts 1, and every other non-space character counts
    0.5. Not a real tokenizer.
    """
    if not text:
        return 0

    chinese_chars = 0
    english_words = 0
    other_chars = 0

    for word in text.split():
        has_letter = False
        for ch in word:
            if _is_cjk(ch):
                chinese_chars += 1
            elif ch.isalpha():
                has_letter = True
            else:
                other_chars += 1
        if has_letter:
            english_words += 1

    return math.ceil(chinese_chars * 1.5 + english_words + other_chars * 0.5)
