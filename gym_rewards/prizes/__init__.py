"""
Gym Rewards Prize Engine.

This module provides the reward selection and redemption engine:
- Prize Catalog with stock and eligibility rules
- Roulettes (weighted selectors) with spin limits and cooldowns
- QR Codes (scan gates) that trigger draws
- Prize Winnings with lifecycle tracking and redemption codes

Quick Start:
    from gym_rewards.prizes import PrizeEngine, MemoryStore

    engine = PrizeEngine(store=MemoryStore(), clients=directory)

    # Spin a roulette
    result = await engine.spin(roulette_id=1, client_id=123)

    # Scan a QR code
    result = await engine.scan(code="QR-...", client_id=123)

    # Redeem a manual prize at the desk
    winning = await engine.redeem_by_code("ABCD2345", processed_by=7)

PostgreSQL storage lives in ``gym_rewards.prizes.pg.PgRewardStore``.
"""
from .models import (
    # Core Models
    Prize,
    Roulette,
    RouletteSector,
    PrizeWinning,
    WinningHistory,
    QRCode,
    AllowedLocation,

    # Enums
    PrizeType,
    PrizeCategory,
    RouletteCategory,
    WinningStatus,
    QRCodeType,
    NotificationType,
)

from .results import (
    CheckResult,
    SectorChoice,
    ScanResult,
    DrawResult,
)

from .storage import RewardStore, MemoryStore

from .collaborators import (
    ClientDirectory,
    MembershipService,
    PointsLedger,
    OrderService,
    Notifier,
)

from .catalog import PrizeCatalog
from .eligibility import EligibilityEvaluator
from .limits import KeyedLock, LimitGuard
from .roulette import WeightedSelector, RouletteRegistry, validate_configuration
from .codes import RedemptionCodeIssuer
from .qrcode import ScanGate
from .lifecycle import WinningLifecycle
from .service import PrizeEngine
from .jobs import expire_old_prizes, register_expiration_job


__all__ = [
    # Models
    'Prize',
    'Roulette',
    'RouletteSector',
    'PrizeWinning',
    'WinningHistory',
    'QRCode',
    'AllowedLocation',

    # Enums
    'PrizeType',
    'PrizeCategory',
    'RouletteCategory',
    'WinningStatus',
    'QRCodeType',
    'NotificationType',

    # Results
    'CheckResult',
    'SectorChoice',
    'ScanResult',
    'DrawResult',

    # Storage & collaborators
    'RewardStore',
    'MemoryStore',
    'ClientDirectory',
    'MembershipService',
    'PointsLedger',
    'OrderService',
    'Notifier',

    # Components
    'PrizeCatalog',
    'EligibilityEvaluator',
    'KeyedLock',
    'LimitGuard',
    'WeightedSelector',
    'RouletteRegistry',
    'validate_configuration',
    'RedemptionCodeIssuer',
    'ScanGate',
    'WinningLifecycle',
    'PrizeEngine',

    # Scheduler
    'expire_old_prizes',
    'register_expiration_job',
]
