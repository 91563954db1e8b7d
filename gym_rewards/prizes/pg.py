"""
PostgreSQL storage for the Prize Engine.

Raw parameterised SQL over an ``asyncdb`` connection pool; tables are
created by ``resources/sql/gym_rewards.sql``.
"""
from typing import Optional, List, Dict, Any, Iterable
from datetime import datetime
from decimal import Decimal
import json

from navconfig.logging import logging
from asyncdb import AsyncDB

from ..conf import REWARDS_SCHEMA
from ..exceptions import DuplicateCodeError
from .models import (
    Prize,
    Roulette,
    RouletteSector,
    PrizeWinning,
    WinningHistory,
    QRCode,
    AllowedLocation,
    WinningStatus,
)
from .storage import RewardStore


PRIZE_COLUMNS = [
    'name', 'description', 'prize_type', 'category', 'value', 'currency',
    'free_product_id', 'product_quantity', 'stock_quantity', 'awarded_count',
    'redeemed_count', 'is_active', 'valid_from', 'valid_until',
    'requires_manual_approval', 'auto_apply', 'expiration_days',
    'max_per_client', 'max_per_day', 'max_per_week', 'minimum_age',
    'minimum_membership_days', 'excluded_membership_types',
    'base_probability', 'send_notification', 'metadata',
]

ROULETTE_COLUMNS = [
    'name', 'description', 'category', 'theme_color', 'background_color',
    'sectors', 'is_active', 'is_default', 'max_spins_per_day',
    'max_spins_per_week', 'max_total_spins_per_day', 'cooldown_minutes',
    'valid_from', 'valid_until', 'available_hours_start',
    'available_hours_end', 'available_days', 'total_spins',
    'total_prizes_awarded',
]

QRCODE_COLUMNS = [
    'code', 'code_type', 'prize_category', 'fixed_prize_id', 'client_id',
    'restrict_to_owner', 'is_active', 'is_used', 'used_at',
    'used_by_client_id', 'max_uses', 'current_uses', 'scan_count',
    'last_scan_at', 'valid_from', 'valid_until', 'time_restricted',
    'allowed_hours_start', 'allowed_hours_end', 'location_restricted',
    'allowed_locations', 'batch_id', 'metadata',
]

WINNING_COLUMNS = [
    'client_id', 'prize_id', 'roulette_id', 'qr_code_id', 'sector_index',
    'prize_name', 'prize_type', 'prize_value', 'prize_currency', 'status',
    'won_at', 'applied_at', 'redeemed_at', 'cancelled_at', 'expired_at',
    'expires_at', 'auto_applied', 'manual_redemption_required',
    'redemption_code', 'applied_to_membership_id', 'applied_to_order_id',
    'processed_by', 'processing_notes', 'requires_verification', 'verified',
    'verified_by', 'verified_at', 'cancelled_by', 'cancelled_reason',
    'notification_sent', 'notification_sent_at', 'metadata',
]

HISTORY_COLUMNS = [
    'winning_id', 'previous_status', 'status', 'changed_at', 'changed_by',
    'reason',
]

PRIZE_SELECT = ', '.join(['prize_id'] + PRIZE_COLUMNS)
ROULETTE_SELECT = ', '.join(['roulette_id'] + ROULETTE_COLUMNS)
QRCODE_SELECT = ', '.join(['qr_code_id'] + QRCODE_COLUMNS)
WINNING_SELECT = ', '.join(['winning_id'] + WINNING_COLUMNS)
HISTORY_SELECT = ', '.join(['history_id'] + HISTORY_COLUMNS)


def _json(value, default):
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _plain(value):
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row(row) -> Dict[str, Any]:
    return {k: _plain(v) for k, v in dict(row).items()}


def _params(record, columns: Iterable[str]) -> List[Any]:
    params = []
    for column in columns:
        value = getattr(record, column)
        if column in ('sectors', 'allowed_locations'):
            value = [item.to_dict() for item in value or []]
        params.append(value)
    return params


def _placeholders(columns: List[str], start: int = 1) -> str:
    return ', '.join(f"${i}" for i in range(start, start + len(columns)))


def _assignments(columns: List[str], start: int = 1) -> str:
    return ', '.join(
        f"{column} = ${i}" for i, column in enumerate(columns, start)
    )


class PgRewardStore(RewardStore):
    """RewardStore on PostgreSQL."""

    def __init__(
        self,
        connection: AsyncDB = None,
        schema: str = REWARDS_SCHEMA,
        logger=None
    ):
        self.connection = connection
        self._schema = schema
        self.logger = logger or logging.getLogger('Rewards.Storage')

    async def set_connection(self, connection: AsyncDB):
        """Set the database connection."""
        self.connection = connection

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    def _to_prize(self, row) -> Optional[Prize]:
        if not row:
            return None
        data = _row(row)
        data['metadata'] = _json(data.get('metadata'), {})
        data['excluded_membership_types'] = list(
            data.get('excluded_membership_types') or []
        )
        return Prize(**data)

    def _to_roulette(self, row) -> Optional[Roulette]:
        if not row:
            return None
        data = _row(row)
        data['sectors'] = [
            RouletteSector(**sector)
            for sector in _json(data.get('sectors'), [])
        ]
        data['available_days'] = list(data.get('available_days') or [])
        return Roulette(**data)

    def _to_qrcode(self, row) -> Optional[QRCode]:
        if not row:
            return None
        data = _row(row)
        data['allowed_locations'] = [
            AllowedLocation(**location)
            for location in _json(data.get('allowed_locations'), [])
        ]
        data['metadata'] = _json(data.get('metadata'), {})
        return QRCode(**data)

    def _to_winning(self, row) -> Optional[PrizeWinning]:
        if not row:
            return None
        data = _row(row)
        data['metadata'] = _json(data.get('metadata'), {})
        return PrizeWinning(**data)

    # =========================================================================
    # PRIZES
    # =========================================================================

    async def get_prize(self, prize_id: int) -> Optional[Prize]:
        query = f"SELECT {PRIZE_SELECT} FROM {self._schema}.prizes WHERE prize_id = $1"
        async with await self.connection.acquire() as conn:
            return self._to_prize(await conn.fetchrow(query, [prize_id]))

    async def list_prizes(self, category: Optional[str] = None) -> List[Prize]:
        query = f"""
            SELECT {PRIZE_SELECT} FROM {self._schema}.prizes
            WHERE ($1::varchar IS NULL OR category = $1)
            ORDER BY prize_id
        """
        async with await self.connection.acquire() as conn:
            rows = await conn.fetch_all(query, [category])
            return [self._to_prize(r) for r in rows]

    async def update_prize(self, prize: Prize) -> Prize:
        """Only the counters are written; staff tooling owns the rest."""
        query = f"""
            UPDATE {self._schema}.prizes
            SET awarded_count = $1, redeemed_count = $2, updated_at = NOW()
            WHERE prize_id = $3
        """
        async with await self.connection.acquire() as conn:
            await conn.execute(
                query,
                [prize.awarded_count, prize.redeemed_count, prize.prize_id]
            )
        return prize

    # =========================================================================
    # ROULETTES
    # =========================================================================

    async def get_roulette(self, roulette_id: int) -> Optional[Roulette]:
        query = f"SELECT {ROULETTE_SELECT} FROM {self._schema}.roulettes WHERE roulette_id = $1"
        async with await self.connection.acquire() as conn:
            return self._to_roulette(await conn.fetchrow(query, [roulette_id]))

    async def list_roulettes(self, category: Optional[str] = None) -> List[Roulette]:
        query = f"""
            SELECT {ROULETTE_SELECT} FROM {self._schema}.roulettes
            WHERE ($1::varchar IS NULL OR category = $1)
            ORDER BY roulette_id
        """
        async with await self.connection.acquire() as conn:
            rows = await conn.fetch_all(query, [category])
            return [self._to_roulette(r) for r in rows]

    async def save_roulette(self, roulette: Roulette) -> Roulette:
        params = _params(roulette, ROULETTE_COLUMNS)
        if roulette.roulette_id is None:
            query = f"""
                INSERT INTO {self._schema}.roulettes ({', '.join(ROULETTE_COLUMNS)})
                VALUES ({_placeholders(ROULETTE_COLUMNS)})
                RETURNING roulette_id
            """
        else:
            query = f"""
                UPDATE {self._schema}.roulettes
                SET {_assignments(ROULETTE_COLUMNS)}, updated_at = NOW()
                WHERE roulette_id = ${len(ROULETTE_COLUMNS) + 1}
                RETURNING roulette_id
            """
            params.append(roulette.roulette_id)
        async with await self.connection.acquire() as conn:
            roulette.roulette_id = await conn.fetchval(query, params)
        return roulette

    async def clear_default(self, category: str, keep_id: Optional[int]) -> int:
        query = f"""
            WITH cleared AS (
                UPDATE {self._schema}.roulettes
                SET is_default = FALSE, updated_at = NOW()
                WHERE category = $1
                  AND is_default = TRUE
                  AND ($2::integer IS NULL OR roulette_id <> $2)
                RETURNING roulette_id
            )
            SELECT COUNT(*) FROM cleared
        """
        async with await self.connection.acquire() as conn:
            return await conn.fetchval(query, [category, keep_id]) or 0

    # =========================================================================
    # QR CODES
    # =========================================================================

    async def get_qrcode(self, qr_code_id: int) -> Optional[QRCode]:
        query = f"SELECT {QRCODE_SELECT} FROM {self._schema}.qr_codes WHERE qr_code_id = $1"
        async with await self.connection.acquire() as conn:
            return self._to_qrcode(await conn.fetchrow(query, [qr_code_id]))

    async def get_qrcode_by_code(self, code: str) -> Optional[QRCode]:
        query = f"SELECT {QRCODE_SELECT} FROM {self._schema}.qr_codes WHERE code = $1"
        async with await self.connection.acquire() as conn:
            return self._to_qrcode(await conn.fetchrow(query, [code]))

    async def qrcode_exists(self, code: str) -> bool:
        query = f"""
            SELECT EXISTS(SELECT 1 FROM {self._schema}.qr_codes WHERE code = $1)
        """
        async with await self.connection.acquire() as conn:
            return bool(await conn.fetchval(query, [code]))

    async def save_qrcode(self, qrcode: QRCode) -> QRCode:
        params = _params(qrcode, QRCODE_COLUMNS)
        if qrcode.qr_code_id is None:
            query = f"""
                INSERT INTO {self._schema}.qr_codes ({', '.join(QRCODE_COLUMNS)})
                VALUES ({_placeholders(QRCODE_COLUMNS)})
                RETURNING qr_code_id
            """
        else:
            query = f"""
                UPDATE {self._schema}.qr_codes
                SET {_assignments(QRCODE_COLUMNS)}, updated_at = NOW()
                WHERE qr_code_id = ${len(QRCODE_COLUMNS) + 1}
                RETURNING qr_code_id
            """
            params.append(qrcode.qr_code_id)
        async with await self.connection.acquire() as conn:
            qrcode.qr_code_id = await conn.fetchval(query, params)
        return qrcode

    # =========================================================================
    # WINNINGS
    # =========================================================================

    async def insert_winning(self, winning: PrizeWinning) -> PrizeWinning:
        # the partial unique index on redemption_code turns a duplicate
        # into an empty RETURNING
        query = f"""
            INSERT INTO {self._schema}.prize_winnings ({', '.join(WINNING_COLUMNS)})
            VALUES ({_placeholders(WINNING_COLUMNS)})
            ON CONFLICT (redemption_code) WHERE status <> 'cancelled'
            DO NOTHING
            RETURNING winning_id
        """
        async with await self.connection.acquire() as conn:
            winning_id = await conn.fetchval(query, _params(winning, WINNING_COLUMNS))
        if winning_id is None:
            raise DuplicateCodeError(
                f"Redemption code {winning.redemption_code} already in use"
            )
        winning.winning_id = winning_id
        return winning

    async def update_winning(self, winning: PrizeWinning) -> PrizeWinning:
        query = f"""
            UPDATE {self._schema}.prize_winnings
            SET {_assignments(WINNING_COLUMNS)}, updated_at = NOW()
            WHERE winning_id = ${len(WINNING_COLUMNS) + 1}
        """
        params = _params(winning, WINNING_COLUMNS) + [winning.winning_id]
        async with await self.connection.acquire() as conn:
            await conn.execute(query, params)
        return winning

    async def get_winning(self, winning_id: int) -> Optional[PrizeWinning]:
        query = f"""
            SELECT {WINNING_SELECT} FROM {self._schema}.prize_winnings WHERE winning_id = $1
        """
        async with await self.connection.acquire() as conn:
            return self._to_winning(await conn.fetchrow(query, [winning_id]))

    async def get_pending_by_code(self, code: str) -> Optional[PrizeWinning]:
        query = f"""
            SELECT {WINNING_SELECT} FROM {self._schema}.prize_winnings
            WHERE redemption_code = $1 AND status = $2
        """
        async with await self.connection.acquire() as conn:
            row = await conn.fetchrow(query, [code, WinningStatus.PENDING.value])
            return self._to_winning(row)

    async def redemption_code_exists(self, code: str) -> bool:
        query = f"""
            SELECT EXISTS(
                SELECT 1 FROM {self._schema}.prize_winnings
                WHERE redemption_code = $1 AND status <> $2
            )
        """
        async with await self.connection.acquire() as conn:
            return bool(
                await conn.fetchval(query, [code, WinningStatus.CANCELLED.value])
            )

    async def count_winnings(
        self,
        prize_id: Optional[int] = None,
        client_id: Optional[int] = None,
        roulette_id: Optional[int] = None,
        since: Optional[datetime] = None
    ) -> int:
        query = f"""
            SELECT COUNT(*) FROM {self._schema}.prize_winnings
            WHERE ($1::integer IS NULL OR prize_id = $1)
              AND ($2::integer IS NULL OR client_id = $2)
              AND ($3::integer IS NULL OR roulette_id = $3)
              AND ($4::timestamp IS NULL OR won_at >= $4)
        """
        async with await self.connection.acquire() as conn:
            result = await conn.fetchval(
                query,
                [prize_id, client_id, roulette_id, since]
            )
            return result or 0

    async def last_winning_at(
        self,
        client_id: int,
        roulette_id: int
    ) -> Optional[datetime]:
        query = f"""
            SELECT MAX(won_at) FROM {self._schema}.prize_winnings
            WHERE client_id = $1 AND roulette_id = $2
        """
        async with await self.connection.acquire() as conn:
            return await conn.fetchval(query, [client_id, roulette_id])

    async def find_pending(
        self,
        client_id: Optional[int] = None,
        expires_before: Optional[datetime] = None,
        expires_after: Optional[datetime] = None
    ) -> List[PrizeWinning]:
        query = f"""
            SELECT {WINNING_SELECT} FROM {self._schema}.prize_winnings
            WHERE status = $1
              AND ($2::integer IS NULL OR client_id = $2)
              AND ($3::timestamp IS NULL OR expires_at < $3)
              AND ($4::timestamp IS NULL OR expires_at > $4)
            ORDER BY won_at DESC
        """
        params = [
            WinningStatus.PENDING.value,
            client_id,
            expires_before,
            expires_after
        ]
        async with await self.connection.acquire() as conn:
            rows = await conn.fetch_all(query, params)
            return [self._to_winning(r) for r in rows]

    # =========================================================================
    # HISTORY
    # =========================================================================

    async def append_history(self, entry: WinningHistory) -> WinningHistory:
        query = f"""
            INSERT INTO {self._schema}.prize_winning_history ({', '.join(HISTORY_COLUMNS)})
            VALUES ({_placeholders(HISTORY_COLUMNS)})
            RETURNING history_id
        """
        async with await self.connection.acquire() as conn:
            entry.history_id = await conn.fetchval(
                query,
                _params(entry, HISTORY_COLUMNS)
            )
        return entry

    async def list_history(self, winning_id: int) -> List[WinningHistory]:
        query = f"""
            SELECT {HISTORY_SELECT} FROM {self._schema}.prize_winning_history
            WHERE winning_id = $1
            ORDER BY changed_at, history_id
        """
        async with await self.connection.acquire() as conn:
            rows = await conn.fetch_all(query, [winning_id])
            return [WinningHistory(**_row(r)) for r in rows]
