"""
Persistence interface for the Prize Engine.

``RewardStore`` is what the engine needs from storage: the records of
``models.py`` plus count queries scoped by time window and by
prize/roulette/client. ``MemoryStore`` keeps everything in process and is
used by tests and single-node deployments; ``pg.PgRewardStore`` runs on
PostgreSQL.
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict
from datetime import datetime
import itertools

from ..exceptions import DuplicateCodeError
from .models import (
    Prize,
    Roulette,
    PrizeWinning,
    WinningHistory,
    QRCode,
    WinningStatus,
)


class RewardStore(ABC):
    """Storage collaborator."""

    # Prizes
    @abstractmethod
    async def get_prize(self, prize_id: int) -> Optional[Prize]:
        ...

    @abstractmethod
    async def list_prizes(self, category: Optional[str] = None) -> List[Prize]:
        ...

    @abstractmethod
    async def update_prize(self, prize: Prize) -> Prize:
        ...

    # Roulettes
    @abstractmethod
    async def get_roulette(self, roulette_id: int) -> Optional[Roulette]:
        ...

    @abstractmethod
    async def list_roulettes(self, category: Optional[str] = None) -> List[Roulette]:
        ...

    @abstractmethod
    async def save_roulette(self, roulette: Roulette) -> Roulette:
        """Insert or update; assigns ``roulette_id`` on insert."""

    @abstractmethod
    async def clear_default(self, category: str, keep_id: Optional[int]) -> int:
        """Unset ``is_default`` on every roulette of ``category`` but ``keep_id``."""

    # QR codes
    @abstractmethod
    async def get_qrcode(self, qr_code_id: int) -> Optional[QRCode]:
        ...

    @abstractmethod
    async def get_qrcode_by_code(self, code: str) -> Optional[QRCode]:
        ...

    @abstractmethod
    async def qrcode_exists(self, code: str) -> bool:
        ...

    @abstractmethod
    async def save_qrcode(self, qrcode: QRCode) -> QRCode:
        ...

    # Winnings
    @abstractmethod
    async def insert_winning(self, winning: PrizeWinning) -> PrizeWinning:
        """Insert a winning.

        Raises DuplicateCodeError when its redemption code is already held
        by a non-cancelled winning.
        """

    @abstractmethod
    async def update_winning(self, winning: PrizeWinning) -> PrizeWinning:
        ...

    @abstractmethod
    async def get_winning(self, winning_id: int) -> Optional[PrizeWinning]:
        ...

    @abstractmethod
    async def get_pending_by_code(self, code: str) -> Optional[PrizeWinning]:
        ...

    @abstractmethod
    async def redemption_code_exists(self, code: str) -> bool:
        """True if a non-cancelled winning holds ``code``."""

    @abstractmethod
    async def count_winnings(
        self,
        prize_id: Optional[int] = None,
        client_id: Optional[int] = None,
        roulette_id: Optional[int] = None,
        since: Optional[datetime] = None
    ) -> int:
        ...

    @abstractmethod
    async def last_winning_at(
        self,
        client_id: int,
        roulette_id: int
    ) -> Optional[datetime]:
        ...

    @abstractmethod
    async def find_pending(
        self,
        client_id: Optional[int] = None,
        expires_before: Optional[datetime] = None,
        expires_after: Optional[datetime] = None
    ) -> List[PrizeWinning]:
        ...

    # History
    @abstractmethod
    async def append_history(self, entry: WinningHistory) -> WinningHistory:
        ...

    @abstractmethod
    async def list_history(self, winning_id: int) -> List[WinningHistory]:
        ...


class MemoryStore(RewardStore):
    """In-process store. Records are kept by reference."""

    def __init__(self):
        self.prizes: Dict[int, Prize] = {}
        self.roulettes: Dict[int, Roulette] = {}
        self.qrcodes: Dict[int, QRCode] = {}
        self.winnings: Dict[int, PrizeWinning] = {}
        self.history: List[WinningHistory] = []
        self._ids = {
            'prize': itertools.count(1),
            'roulette': itertools.count(1),
            'qrcode': itertools.count(1),
            'winning': itertools.count(1),
            'history': itertools.count(1),
        }

    def _next_id(self, kind: str) -> int:
        return next(self._ids[kind])

    async def add_prize(self, prize: Prize) -> Prize:
        """Catalog seeding (staff tooling owns prizes)."""
        if prize.prize_id is None:
            prize.prize_id = self._next_id('prize')
        self.prizes[prize.prize_id] = prize
        return prize

    async def get_prize(self, prize_id: int) -> Optional[Prize]:
        return self.prizes.get(prize_id)

    async def list_prizes(self, category: Optional[str] = None) -> List[Prize]:
        return [
            p for p in self.prizes.values()
            if category is None or p.category == category
        ]

    async def update_prize(self, prize: Prize) -> Prize:
        self.prizes[prize.prize_id] = prize
        return prize

    async def get_roulette(self, roulette_id: int) -> Optional[Roulette]:
        return self.roulettes.get(roulette_id)

    async def list_roulettes(self, category: Optional[str] = None) -> List[Roulette]:
        return [
            r for r in self.roulettes.values()
            if category is None or r.category == category
        ]

    async def save_roulette(self, roulette: Roulette) -> Roulette:
        if roulette.roulette_id is None:
            roulette.roulette_id = self._next_id('roulette')
        self.roulettes[roulette.roulette_id] = roulette
        return roulette

    async def clear_default(self, category: str, keep_id: Optional[int]) -> int:
        cleared = 0
        for roulette in self.roulettes.values():
            if roulette.category != category or roulette.roulette_id == keep_id:
                continue
            if roulette.is_default:
                roulette.is_default = False
                cleared += 1
        return cleared

    async def get_qrcode(self, qr_code_id: int) -> Optional[QRCode]:
        return self.qrcodes.get(qr_code_id)

    async def get_qrcode_by_code(self, code: str) -> Optional[QRCode]:
        for qrcode in self.qrcodes.values():
            if qrcode.code == code:
                return qrcode
        return None

    async def qrcode_exists(self, code: str) -> bool:
        return await self.get_qrcode_by_code(code) is not None

    async def save_qrcode(self, qrcode: QRCode) -> QRCode:
        if qrcode.qr_code_id is None:
            qrcode.qr_code_id = self._next_id('qrcode')
        self.qrcodes[qrcode.qr_code_id] = qrcode
        return qrcode

    async def insert_winning(self, winning: PrizeWinning) -> PrizeWinning:
        if winning.redemption_code and await self.redemption_code_exists(
            winning.redemption_code
        ):
            raise DuplicateCodeError(
                f"Redemption code {winning.redemption_code} already in use"
            )
        winning.winning_id = self._next_id('winning')
        self.winnings[winning.winning_id] = winning
        return winning

    async def update_winning(self, winning: PrizeWinning) -> PrizeWinning:
        self.winnings[winning.winning_id] = winning
        return winning

    async def get_winning(self, winning_id: int) -> Optional[PrizeWinning]:
        return self.winnings.get(winning_id)

    async def get_pending_by_code(self, code: str) -> Optional[PrizeWinning]:
        for winning in self.winnings.values():
            if (
                winning.redemption_code == code
                and winning.status == WinningStatus.PENDING.value
            ):
                return winning
        return None

    async def redemption_code_exists(self, code: str) -> bool:
        return any(
            w.redemption_code == code
            and w.status != WinningStatus.CANCELLED.value
            for w in self.winnings.values()
        )

    async def count_winnings(
        self,
        prize_id: Optional[int] = None,
        client_id: Optional[int] = None,
        roulette_id: Optional[int] = None,
        since: Optional[datetime] = None
    ) -> int:
        total = 0
        for w in self.winnings.values():
            if prize_id is not None and w.prize_id != prize_id:
                continue
            if client_id is not None and w.client_id != client_id:
                continue
            if roulette_id is not None and w.roulette_id != roulette_id:
                continue
            if since is not None and w.won_at < since:
                continue
            total += 1
        return total

    async def last_winning_at(
        self,
        client_id: int,
        roulette_id: int
    ) -> Optional[datetime]:
        times = [
            w.won_at for w in self.winnings.values()
            if w.client_id == client_id and w.roulette_id == roulette_id
        ]
        return max(times) if times else None

    async def find_pending(
        self,
        client_id: Optional[int] = None,
        expires_before: Optional[datetime] = None,
        expires_after: Optional[datetime] = None
    ) -> List[PrizeWinning]:
        result = []
        for w in self.winnings.values():
            if w.status != WinningStatus.PENDING.value:
                continue
            if client_id is not None and w.client_id != client_id:
                continue
            if expires_before is not None:
                if w.expires_at is None or w.expires_at >= expires_before:
                    continue
            if expires_after is not None:
                if w.expires_at is None or w.expires_at <= expires_after:
                    continue
            result.append(w)
        return sorted(result, key=lambda w: w.won_at, reverse=True)

    async def append_history(self, entry: WinningHistory) -> WinningHistory:
        entry.history_id = self._next_id('history')
        self.history.append(entry)
        return entry

    async def list_history(self, winning_id: int) -> List[WinningHistory]:
        return [h for h in self.history if h.winning_id == winning_id]
