from __future__ import annotations

from dataclasses import dataclass

import pytest

from app.errors import InvalidInputError, NotFoundError
from app.services.router import clamp_locked_odds, option_matches, pick_best_odds


@dataclass
class Row:
    platform_id: int
    option_name: str
    option_type: str
    price: float


def test_yes_picks_the_highest_win_price_across_venues():
    rows = [
        Row(1, "Lakers", "win", 0.55),
        Row(1, "Celtics", "lose", 0.45),
        Row(2, "YES", "win", 0.62),
        Row(2, "NO", "lose", 0.40),
    ]

    best = pick_best_odds(rows, "YES")

    assert (best.platform_id, best.price, best.option_name) == (2, 0.62, "YES")


def test_named_option_matches_case_insensitively():
    rows = [Row(1, "Lakers", "win", 0.55), Row(2, "lakers", "win", 0.58), Row(2, "Celtics", "lose", 0.9)]

    best = pick_best_odds(rows, " LAKERS ")

    assert (best.platform_id, best.option_name) == (2, "lakers")


def test_ties_keep_the_first_row():
    rows = [Row(2, "YES", "win", 0.6), Row(1, "Lakers", "win", 0.6)]

    assert pick_best_odds(rows, "yes").platform_id == 2


def test_no_direction_uses_lose_option_type():
    rows = [Row(1, "Celtics", "lose", 0.48), Row(2, "NO", "lose", 0.40), Row(2, "YES", "win", 0.7)]

    best = pick_best_odds(rows, "no")

    assert (best.platform_id, best.price) == (1, 0.48)


def test_unmatched_option_is_not_found():
    with pytest.raises(NotFoundError):
        pick_best_odds([Row(1, "Lakers", "win", 0.55)], "Draw")


def test_empty_option_is_invalid():
    with pytest.raises(InvalidInputError):
        pick_best_odds([Row(1, "Lakers", "win", 0.55)], "  ")


def test_option_matches_ignores_unknown_direction():
    assert not option_matches(Row(1, "Lakers", "win", 0.5), "Celtics")


@pytest.mark.parametrize("price, expected", [(0.0, 0.01), (0.5, 0.5), (1.0, 0.99), (0.995, 0.99)])
def test_clamp_locked_odds(price, expected):
    assert clamp_locked_odds(price) == expected
