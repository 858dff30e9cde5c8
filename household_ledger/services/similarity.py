"""Similarity scoring between an incoming record and a stored transaction.

The score is the sum of three capped components:

- amount   (max 0.40): |delta| < 0.02 -> 0.40, < 0.50 -> 0.20
- date     (max 0.25): same day -> 0.25, <= 1 day -> 0.15, <= 3 days -> 0.05
- text     (max 0.35): best normalized similarity over the description and
  merchant pairings, scaled by 0.35

All arithmetic stays in Decimal/Fraction so the 0.70 acceptance boundary is
exact.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from fractions import Fraction

AMOUNT_WEIGHT = Decimal("0.40")
AMOUNT_NEAR_WEIGHT = Decimal("0.20")
AMOUNT_EXACT_TOLERANCE = Decimal("0.02")
AMOUNT_NEAR_TOLERANCE = Decimal("0.50")

DATE_SAME_DAY = Decimal("0.25")
DATE_ONE_DAY = Decimal("0.15")
DATE_THREE_DAYS = Decimal("0.05")

TEXT_WEIGHT = Decimal("0.35")

MIN_WORD_LENGTH = 3

_STRIP_PATTERN = re.compile(r"[^a-z0-9\s]")


@dataclass(frozen=True)
class SimilarityBreakdown:
    """Per-component scores for one candidate pair."""

    amount: Decimal
    date: Decimal
    text: Decimal

    @property
    def total(self) -> Decimal:
        return self.amount + self.date + self.text


def normalize_text(value: str | None) -> str:
    """Lowercase, drop punctuation and trim."""
    if not value:
        return ""
    return _STRIP_PATTERN.sub("", value.lower()).strip()


def text_similarity(a: str | None, b: str | None) -> Fraction:
    """Return an exact similarity ratio in [0, 1] for two free-text values.

    Identical normalized strings score 1. When one contains the other the
    score is shorter/longer length. Otherwise it is the overlap of words
    longer than two characters divided by the larger word set.
    """
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if not norm_a or not norm_b:
        return Fraction(0)
    if norm_a == norm_b:
        return Fraction(1)

    if norm_a in norm_b or norm_b in norm_a:
        shorter, longer = sorted((len(norm_a), len(norm_b)))
        return Fraction(shorter, longer)

    words_a = {word for word in norm_a.split() if len(word) >= MIN_WORD_LENGTH}
    words_b = {word for word in norm_b.split() if len(word) >= MIN_WORD_LENGTH}
    if not words_a or not words_b:
        return Fraction(0)
    return Fraction(len(words_a & words_b), max(len(words_a), len(words_b)))


def score_amount(incoming: Decimal, stored: Decimal) -> Decimal:
    diff = abs(incoming - stored)
    if diff < AMOUNT_EXACT_TOLERANCE:
        return AMOUNT_WEIGHT
    if diff < AMOUNT_NEAR_TOLERANCE:
        return AMOUNT_NEAR_WEIGHT
    return Decimal("0")


def score_date(incoming: date, stored: date) -> Decimal:
    diff_days = abs((incoming - stored).days)
    if diff_days == 0:
        return DATE_SAME_DAY
    if diff_days <= 1:
        return DATE_ONE_DAY
    if diff_days <= 3:
        return DATE_THREE_DAYS
    return Decimal("0")


def score_text(
    description: str | None,
    merchant: str | None,
    stored_description: str | None,
    stored_merchant: str | None,
) -> Decimal:
    """Score the best of the four description/merchant pairings."""
    best = max(
        text_similarity(description, stored_description),
        text_similarity(merchant, stored_merchant),
        text_similarity(description, stored_merchant),
        text_similarity(merchant, stored_description),
    )
    # Multiply before dividing so ratios like 1/7 land exactly on 0.05.
    return TEXT_WEIGHT * best.numerator / best.denominator


def similarity_breakdown(
    *,
    amount: Decimal,
    txn_date: date,
    description: str | None,
    merchant: str | None,
    stored_amount: Decimal,
    stored_date: date,
    stored_description: str | None,
    stored_merchant: str | None,
) -> SimilarityBreakdown:
    return SimilarityBreakdown(
        amount=score_amount(amount, stored_amount),
        date=score_date(txn_date, stored_date),
        text=score_text(description, merchant, stored_description, stored_merchant),
    )


def similarity_score(
    *,
    amount: Decimal,
    txn_date: date,
    description: str | None,
    merchant: str | None,
    stored_amount: Decimal,
    stored_date: date,
    stored_description: str | None,
    stored_merchant: str | None,
) -> Decimal:
    """Return the confidence in [0, 1] that both sides describe the same transaction."""
    return similarity_breakdown(
        amount=amount,
        txn_date=txn_date,
        description=description,
        merchant=merchant,
        stored_amount=stored_amount,
        stored_date=stored_date,
        stored_description=stored_description,
        stored_merchant=stored_merchant,
    ).total


def is_match(score: Decimal, threshold: Decimal) -> bool:
    """Return True if a fuzzy score is high enough to link the pair."""
    return score >= threshold
