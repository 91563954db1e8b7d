"""
Prize Engine Models for Gym Rewards.

This module defines the data models for:
- Prize Catalog
- Roulettes (weighted selector configurations) and their sectors
- Prize Winnings (won prizes) and their status history
- QR Codes (scan gates)
"""
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, time
import math
from datamodel import BaseModel, Field
from ..conf import REWARDS_SCHEMA, PRIZE_CURRENCY, DEFAULT_LOCATION_RADIUS


# ============================================================================
# ENUMS
# ============================================================================

class PrizeType(str, Enum):
    """What a prize gives to the client."""
    MEMBERSHIP_DAYS = "membership_days"
    DISCOUNT_PERCENTAGE = "discount_percentage"
    DISCOUNT_AMOUNT = "discount_amount"
    FREE_PRODUCT = "free_product"
    POINTS = "points"
    CASH = "cash"
    SERVICE = "service"
    OTHER = "other"


class PrizeCategory(str, Enum):
    """Prize tier; also selects which roulette a QR code triggers."""
    BASIC = "basic"
    PREMIUM = "premium"
    EXCLUSIVE = "exclusive"
    SPECIAL = "special"


class RouletteCategory(str, Enum):
    """Roulette categories (prize categories plus seasonal wheels)."""
    BASIC = "basic"
    PREMIUM = "premium"
    EXCLUSIVE = "exclusive"
    SPECIAL = "special"
    SEASONAL = "seasonal"


class WinningStatus(str, Enum):
    """Status of a won prize."""
    PENDING = "pending"
    APPLIED = "applied"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


FINAL_STATUSES = frozenset({
    WinningStatus.APPLIED.value,
    WinningStatus.REDEEMED.value,
    WinningStatus.EXPIRED.value,
    WinningStatus.CANCELLED.value,
})


class QRCodeType(str, Enum):
    """Kind of scan gate."""
    PRODUCT = "product"
    REMINDER = "reminder"
    PRIZE = "prize"
    CHECKIN = "checkin"
    SPECIAL = "special"


class NotificationType(str, Enum):
    """Prize notifications sent to the client."""
    WON = "won"
    APPLIED = "applied"
    REDEEMED = "redeemed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# ============================================================================
# PRIZE MODEL
# ============================================================================

class Prize(BaseModel):
    """
    Prize catalog entry.

    Owned by staff tooling; the engine only reads it and moves the
    awarded/redeemed counters.
    """

    prize_id: Optional[int] = Field(
        primary_key=True,
        required=False,
        db_default="auto",
        repr=False
    )

    # Basic Info
    name: str = Field(
        required=True,
        max_length=200,
        label="Prize Name"
    )
    description: Optional[str] = Field(
        required=False,
        label="Description"
    )
    prize_type: str = Field(
        required=True,
        label="Prize Type"
    )
    category: str = Field(
        required=False,
        default=PrizeCategory.BASIC.value,
        label="Category"
    )

    # Value
    value: float = Field(
        required=False,
        default=0.0,
        label="Value",
        ui_help="Days, points, percentage or amount depending on the type"
    )
    currency: str = Field(
        required=False,
        default=PRIZE_CURRENCY,
        max_length=3
    )
    free_product_id: Optional[int] = Field(
        required=False,
        label="Free Product"
    )
    product_quantity: int = Field(
        required=False,
        default=1
    )

    # Inventory
    stock_quantity: Optional[int] = Field(
        required=False,
        label="Stock",
        ui_help="Leave empty for unlimited"
    )
    awarded_count: int = Field(required=False, default=0)
    redeemed_count: int = Field(required=False, default=0)

    # Validity
    is_active: bool = Field(required=False, default=True)
    valid_from: datetime = Field(required=False, default=datetime.now)
    valid_until: Optional[datetime] = Field(required=False)

    # Redemption Rules
    requires_manual_approval: bool = Field(
        required=False,
        default=False,
        ui_help="Won prizes must be verified by staff"
    )
    auto_apply: bool = Field(
        required=False,
        default=True,
        ui_help="False = manual redemption with a code"
    )
    expiration_days: Optional[int] = Field(required=False)

    # Usage caps
    max_per_client: Optional[int] = Field(required=False)
    max_per_day: Optional[int] = Field(required=False)
    max_per_week: Optional[int] = Field(required=False)

    # Eligibility
    minimum_age: Optional[int] = Field(required=False)
    minimum_membership_days: int = Field(required=False, default=0)
    excluded_membership_types: List[int] = Field(
        required=False,
        default_factory=list
    )

    base_probability: float = Field(required=False, default=10.0)
    send_notification: bool = Field(required=False, default=True)
    metadata: Dict[str, Any] = Field(required=False, default_factory=dict)

    class Meta:
        name = "prizes"
        schema = REWARDS_SCHEMA
        strict = True

    def __post_init__(self):
        valid_types = [t.value for t in PrizeType]
        if self.prize_type not in valid_types:
            raise ValueError(
                f"Invalid prize_type: {self.prize_type}. "
                f"Must be one of: {valid_types}"
            )
        valid_categories = [c.value for c in PrizeCategory]
        if self.category not in valid_categories:
            raise ValueError(f"Invalid category: {self.category}")
        return super().__post_init__()

    def is_out_of_stock(self) -> bool:
        if self.stock_quantity is None:
            return False
        return self.awarded_count >= self.stock_quantity


# ============================================================================
# ROULETTE MODELS
# ============================================================================

class RouletteSector(BaseModel):
    """One weighted slice of a roulette."""
    prize_id: int = Field(required=True)
    probability: float = Field(
        required=True,
        ui_help="Weight in percent; all sectors add up to 100"
    )
    index: int = Field(required=False, default=0, ui_help="Tie-break order")
    label: Optional[str] = Field(required=False)
    color: Optional[str] = Field(required=False)


class Roulette(BaseModel):
    """
    Roulette (weighted selector) configuration.

    Sectors are walked in ``index`` order when drawing.
    """

    roulette_id: Optional[int] = Field(
        primary_key=True,
        required=False,
        db_default="auto",
        repr=False
    )
    name: str = Field(required=True, max_length=100)
    description: Optional[str] = Field(required=False)
    category: str = Field(
        required=False,
        default=RouletteCategory.BASIC.value
    )

    # Theme (display only)
    theme_color: str = Field(required=False, default="#1E3A8A")
    background_color: str = Field(required=False, default="#F8FAFC")

    sectors: List[RouletteSector] = Field(
        required=False,
        default_factory=list
    )

    is_active: bool = Field(required=False, default=True)
    is_default: bool = Field(required=False, default=False)

    # Usage restrictions
    max_spins_per_day: Optional[int] = Field(
        required=False,
        ui_help="Per client, empty = unlimited"
    )
    max_spins_per_week: Optional[int] = Field(
        required=False,
        ui_help="Per client, empty = unlimited"
    )
    max_total_spins_per_day: Optional[int] = Field(
        required=False,
        ui_help="All clients together, empty = unlimited"
    )
    cooldown_minutes: int = Field(required=False, default=0)

    # Availability
    valid_from: datetime = Field(required=False, default=datetime.now)
    valid_until: Optional[datetime] = Field(required=False)
    available_hours_start: Optional[time] = Field(required=False)
    available_hours_end: Optional[time] = Field(required=False)
    available_days: List[int] = Field(
        required=False,
        default_factory=lambda: [0, 1, 2, 3, 4, 5, 6],
        ui_help="0=Sunday ... 6=Saturday"
    )

    # Statistics
    total_spins: int = Field(required=False, default=0)
    total_prizes_awarded: int = Field(required=False, default=0)

    class Meta:
        name = "roulettes"
        schema = REWARDS_SCHEMA
        strict = True

    def ordered_sectors(self) -> List[RouletteSector]:
        return sorted(self.sectors, key=lambda s: s.index)


# ============================================================================
# PRIZE WINNING MODELS
# ============================================================================

class PrizeWinning(BaseModel):
    """
    A prize won by a client.

    Append-only audit record of a draw: only the status and its
    transition fields change after creation.
    """

    winning_id: Optional[int] = Field(
        primary_key=True,
        required=False,
        db_default="auto",
        repr=False
    )
    client_id: int = Field(required=True, label="Client")
    prize_id: int = Field(required=True, label="Prize")
    roulette_id: Optional[int] = Field(required=False)
    qr_code_id: Optional[int] = Field(required=False)
    sector_index: Optional[int] = Field(required=False)

    # Snapshot of the prize at win time
    prize_name: str = Field(required=True)
    prize_type: str = Field(required=True)
    prize_value: float = Field(required=False, default=0.0)
    prize_currency: str = Field(required=False, default=PRIZE_CURRENCY)

    # Status
    status: str = Field(
        required=False,
        default=WinningStatus.PENDING.value
    )
    won_at: datetime = Field(required=False, default=datetime.now)
    applied_at: Optional[datetime] = Field(required=False)
    redeemed_at: Optional[datetime] = Field(required=False)
    cancelled_at: Optional[datetime] = Field(required=False)
    expired_at: Optional[datetime] = Field(required=False)
    expires_at: Optional[datetime] = Field(required=False)

    # Redemption
    auto_applied: bool = Field(required=False, default=False)
    manual_redemption_required: bool = Field(required=False, default=False)
    redemption_code: Optional[str] = Field(
        required=False,
        max_length=20
    )
    applied_to_membership_id: Optional[int] = Field(required=False)
    applied_to_order_id: Optional[int] = Field(required=False)
    processed_by: Optional[int] = Field(required=False)
    processing_notes: Optional[str] = Field(required=False)

    # Verification
    requires_verification: bool = Field(required=False, default=False)
    verified: bool = Field(required=False, default=False)
    verified_by: Optional[int] = Field(required=False)
    verified_at: Optional[datetime] = Field(required=False)

    # Cancellation
    cancelled_by: Optional[int] = Field(required=False)
    cancelled_reason: Optional[str] = Field(required=False)

    # Notification
    notification_sent: bool = Field(required=False, default=False)
    notification_sent_at: Optional[datetime] = Field(required=False)

    metadata: Dict[str, Any] = Field(required=False, default_factory=dict)

    class Meta:
        name = "prize_winnings"
        schema = REWARDS_SCHEMA
        strict = True

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the winning is past its expiration date."""
        if self.expires_at is None:
            return False
        return (now or datetime.now()) > self.expires_at

    def days_until_expiration(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.expires_at is None:
            return None
        remaining = self.expires_at - (now or datetime.now())
        return max(0, math.ceil(remaining.total_seconds() / 86400))


class WinningHistory(BaseModel):
    """Audit trail entry for a winning status change."""

    history_id: Optional[int] = Field(
        primary_key=True,
        required=False,
        db_default="auto"
    )
    winning_id: int = Field(required=True)
    previous_status: Optional[str] = Field(required=False)
    status: str = Field(required=True)
    changed_at: datetime = Field(required=False, default=datetime.now)
    changed_by: Optional[int] = Field(required=False)
    reason: Optional[str] = Field(required=False)

    class Meta:
        name = "prize_winning_history"
        schema = REWARDS_SCHEMA
        strict = True


# ============================================================================
# QR CODE MODELS
# ============================================================================

class AllowedLocation(BaseModel):
    """A geofence where a QR code can be scanned."""
    latitude: float = Field(required=True)
    longitude: float = Field(required=True)
    radius: float = Field(
        required=False,
        default=float(DEFAULT_LOCATION_RADIUS),
        ui_help="Metres"
    )
    name: Optional[str] = Field(required=False)


class QRCode(BaseModel):
    """
    Scan gate: a limited-use code that authorizes a draw.
    """

    qr_code_id: Optional[int] = Field(
        primary_key=True,
        required=False,
        db_default="auto",
        repr=False
    )
    code: Optional[str] = Field(required=False, max_length=100)
    code_type: str = Field(
        required=False,
        default=QRCodeType.SPECIAL.value
    )
    prize_category: str = Field(
        required=False,
        default=PrizeCategory.BASIC.value
    )
    fixed_prize_id: Optional[int] = Field(
        required=False,
        ui_help="Awards this prize directly instead of spinning"
    )

    # Ownership
    client_id: Optional[int] = Field(required=False, label="Owner")
    restrict_to_owner: bool = Field(required=False, default=False)

    # Usage
    is_active: bool = Field(required=False, default=True)
    is_used: bool = Field(required=False, default=False)
    used_at: Optional[datetime] = Field(required=False)
    used_by_client_id: Optional[int] = Field(required=False)
    max_uses: int = Field(required=False, default=1)
    current_uses: int = Field(required=False, default=0)
    scan_count: int = Field(
        required=False,
        default=0,
        ui_help="Every scan attempt, including rejected ones"
    )
    last_scan_at: Optional[datetime] = Field(required=False)

    # Validity
    valid_from: datetime = Field(required=False, default=datetime.now)
    valid_until: Optional[datetime] = Field(required=False)

    # Restrictions
    time_restricted: bool = Field(required=False, default=False)
    allowed_hours_start: Optional[time] = Field(required=False)
    allowed_hours_end: Optional[time] = Field(required=False)
    location_restricted: bool = Field(required=False, default=False)
    allowed_locations: List[AllowedLocation] = Field(
        required=False,
        default_factory=list
    )

    batch_id: Optional[str] = Field(required=False)
    metadata: Dict[str, Any] = Field(required=False, default_factory=dict)

    class Meta:
        name = "qr_codes"
        schema = REWARDS_SCHEMA
        strict = True

    def uses_remaining(self) -> int:
        return max(0, self.max_uses - self.current_uses)
