from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, Iterator, Optional

from scratchoff.domain import GameInfo, to_decimal


class GameRegistry:
    """Known games for one owner and jurisdiction, keyed by game number."""

    def __init__(self, games: Iterable[GameInfo] = ()) -> None:
        self._games: Dict[str, GameInfo] = {game.game_number: game for game in games}

    def register(self, game_number: str, ticket_price: Decimal, total_tickets_per_book: int) -> bool:
        """Insert a game unless it is already known. Returns True when inserted."""
        if game_number in self._games:
            return False
        self._games[game_number] = GameInfo(
            game_number=game_number,
            ticket_price=to_decimal(ticket_price),
            total_tickets_per_book=total_tickets_per_book,
        )
        return True

    def update(self, game_number: str, ticket_price: Decimal, total_tickets_per_book: int) -> bool:
        """Overwrite a known game. Unknown games are left alone and False is returned."""
        if game_number not in self._games:
            return False
        self._games[game_number] = GameInfo(
            game_number=game_number,
            ticket_price=to_decimal(ticket_price),
            total_tickets_per_book=total_tickets_per_book,
        )
        return True

    def lookup(self, game_number: str) -> Optional[GameInfo]:
        return self._games.get(game_number)

    def delete(self, game_number: str) -> bool:
        # boxes still pointing at the game keep their last known price and count
        return self._games.pop(game_number, None) is not None

    def __contains__(self, game_number: object) -> bool:
        return game_number in self._games

    def __iter__(self) -> Iterator[GameInfo]:
        return iter(sorted(self._games.values(), key=lambda game: game.game_number))

    def __len__(self) -> int:
        return len(self._games)
