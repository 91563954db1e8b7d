"""Result objects returned by the engine components."""
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

from ..exceptions import (
    ExpiredError,
    IneligibleError,
    LimitExceededError,
)
from .models import Prize, PrizeWinning


@dataclass
class CheckResult:
    """
    Outcome of an eligibility, availability or limit check.

    ``code`` names the family of the failing rule:
    ``unavailable``, ``ineligible``, ``limit``, ``used`` or ``expired``.
    """
    allowed: bool
    reason: str = ""
    code: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def ok(cls) -> 'CheckResult':
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, code: str = 'ineligible') -> 'CheckResult':
        return cls(allowed=False, reason=reason, code=code)

    def raise_for_status(self) -> None:
        """Raise the matching engine error when the check failed."""
        if self.allowed:
            return
        if self.code in ('limit', 'used'):
            raise LimitExceededError(self.reason, code=self.code)
        if self.code == 'expired':
            raise ExpiredError(self.reason)
        raise IneligibleError(self.reason, code=self.code or 'ineligible')


@dataclass
class SectorChoice:
    """The sector picked by the weighted selector."""
    prize_id: int
    sector_index: int
    probability: float
    draw: float


@dataclass
class ScanResult:
    """Result of consuming a QR code."""
    success: bool
    qr_code_id: Optional[int] = None
    uses_remaining: int = 0
    prize_category: Optional[str] = None
    fixed_prize_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DrawResult:
    """Result of a spin, scan or direct award."""
    success: bool
    winning: Optional[PrizeWinning] = None
    prize: Optional[Prize] = None
    roulette_id: Optional[int] = None
    sector_index: Optional[int] = None
    redemption_code: Optional[str] = None
    uses_remaining: Optional[int] = None
    message: str = ""
