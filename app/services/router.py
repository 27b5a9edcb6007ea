"""Best-price selection across venues for one match and bet direction.

This is the single place where a user's bet vocabulary (``YES``/``NO`` or a
named outcome) is reconciled with how each venue labels its outcomes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from app.errors import InvalidInputError, NotFoundError
from app.models import OptionType


MIN_LOCKED_ODDS = 0.01
MAX_LOCKED_ODDS = 0.99

_DIRECTION_OPTION_TYPES = {
    "YES": OptionType.WIN.value,
    "NO": OptionType.LOSE.value,
}


class OddsRow(Protocol):
    platform_id: int
    option_name: str
    option_type: str
    price: float


@dataclass(slots=True, frozen=True)
class BestOdds:
    platform_id: int
    price: float
    option_name: str


def option_matches(row: OddsRow, bet_option: str) -> bool:
    if (row.option_name or "").strip().lower() == bet_option.lower():
        return True
    wanted_type = _DIRECTION_OPTION_TYPES.get(bet_option.upper())
    return wanted_type is not None and (row.option_type or "").lower() == wanted_type


def pick_best_odds(rows: Iterable[OddsRow], bet_option: str) -> BestOdds:
    """Return the highest-priced row matching ``bet_option``; the first row wins ties."""

    wanted = (bet_option or "").strip()
    if not wanted:
        raise InvalidInputError("bet_option is required")

    best: BestOdds | None = None
    for row in rows:
        if not option_matches(row, wanted):
            continue
        price = float(row.price)
        if best is None or price > best.price:
            best = BestOdds(platform_id=row.platform_id, price=price, option_name=row.option_name)

    if best is None:
        raise NotFoundError(f"no odds match option {wanted!r}")
    return best


def clamp_locked_odds(price: float) -> float:
    return min(max(price, MIN_LOCKED_ODDS), MAX_LOCKED_ODDS)


__all__ = ["BestOdds", "clamp_locked_odds", "option_matches", "pick_best_odds"]
