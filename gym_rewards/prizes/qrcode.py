"""
Scan gate (QR code) validation and consumption.
"""
from typing import Optional, List, Tuple, Dict, Any
from datetime import datetime, timedelta
import math

from navconfig.logging import logging
from datamodel.exceptions import ValidationError as ModelValidationError

from ..conf import QRCODE_VALIDITY_DAYS, QRCODE_DEFAULT_VALIDITY_DAYS
from ..exceptions import ValidationError, NotFoundError
from .models import QRCode, QRCodeType
from .results import CheckResult, ScanResult
from .storage import RewardStore
from .codes import RedemptionCodeIssuer
from .limits import in_time_window


EARTH_RADIUS = 6371000  # metres


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return EARTH_RADIUS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class ScanGate:
    """Validates and consumes QR codes."""

    def __init__(
        self,
        store: RewardStore,
        issuer: RedemptionCodeIssuer,
        logger=None
    ):
        self.store = store
        self.issuer = issuer
        self.logger = logger or logging.getLogger('Rewards.QRCode')

    async def get_by_code(self, code: str) -> QRCode:
        gate = await self.store.get_qrcode_by_code(code)
        if gate is None:
            raise NotFoundError("QR code not found")
        return gate

    def validate(
        self,
        gate: QRCode,
        client_id: int,
        now: datetime
    ) -> CheckResult:
        if not gate.is_active:
            return CheckResult.deny("QR code is not active", 'unavailable')
        if gate.current_uses >= gate.max_uses:
            return CheckResult.deny("QR code has already been used", 'used')
        if gate.valid_from and gate.valid_from > now:
            return CheckResult.deny("QR code is not valid yet", 'unavailable')
        if gate.valid_until and gate.valid_until < now:
            return CheckResult.deny("QR code has expired", 'expired')
        if (
            gate.restrict_to_owner
            and gate.client_id is not None
            and gate.client_id != client_id
        ):
            return CheckResult.deny("QR code belongs to another client")
        if not self.is_valid_time(gate, now):
            return CheckResult.deny(
                "QR code cannot be used at this time",
                'unavailable'
            )
        return CheckResult.ok()

    def is_valid_time(self, gate: QRCode, now: datetime) -> bool:
        if not gate.time_restricted:
            return True
        if not gate.allowed_hours_start or not gate.allowed_hours_end:
            return True
        return in_time_window(
            now.time(),
            gate.allowed_hours_start,
            gate.allowed_hours_end
        )

    def is_valid_location(
        self,
        gate: QRCode,
        location: Optional[Tuple[float, float]]
    ) -> bool:
        """``location`` is a ``(latitude, longitude)`` pair."""
        if not gate.location_restricted or not gate.allowed_locations:
            return True
        if location is None:
            return False
        lat, lon = location
        return any(
            haversine(lat, lon, allowed.latitude, allowed.longitude) <= allowed.radius
            for allowed in gate.allowed_locations
        )

    async def check(
        self,
        gate: QRCode,
        client_id: int,
        now: datetime,
        location: Optional[Tuple[float, float]] = None
    ) -> CheckResult:
        """validate() plus geofence; a rejected attempt is still counted."""
        result = self.validate(gate, client_id, now)
        if result and not self.is_valid_location(gate, location):
            result = CheckResult.deny(
                "QR code cannot be used at this location",
                'unavailable'
            )
        if not result:
            self.logger.info(
                f"QR code {gate.qr_code_id} rejected for client {client_id}: "
                f"{result.reason}"
            )
            await self.record_scan(gate, now)
        return result

    async def record_scan(self, gate: QRCode, now: datetime) -> QRCode:
        gate.scan_count += 1
        gate.last_scan_at = now
        return await self.store.save_qrcode(gate)

    async def consume(
        self,
        gate: QRCode,
        client_id: int,
        now: Optional[datetime] = None,
        location: Optional[Tuple[float, float]] = None
    ) -> ScanResult:
        """
        Use one of the gate's uses.

        Raises:
            LimitExceededError: no uses left.
            ExpiredError: past ``valid_until``.
            IneligibleError: any other restriction.
        """
        now = now or datetime.now()
        result = await self.check(gate, client_id, now, location)
        result.raise_for_status()

        gate.current_uses += 1
        gate.scan_count += 1
        gate.last_scan_at = now
        if gate.current_uses >= gate.max_uses:
            gate.is_used = True
            gate.used_at = now
            gate.used_by_client_id = client_id
        await self.store.save_qrcode(gate)

        return ScanResult(
            success=True,
            qr_code_id=gate.qr_code_id,
            uses_remaining=gate.uses_remaining(),
            prize_category=gate.prize_category,
            fixed_prize_id=gate.fixed_prize_id,
            metadata=gate.metadata
        )

    async def release(self, gate: QRCode) -> QRCode:
        """Give back a use taken by ``consume`` for a draw that was not recorded.

        The scan itself stays counted.
        """
        if gate.current_uses > 0:
            gate.current_uses -= 1
        if gate.is_used and gate.current_uses < gate.max_uses:
            gate.is_used = False
            gate.used_at = None
            gate.used_by_client_id = None
        self.logger.warning(
            f"Released a use of QR code {gate.qr_code_id}, "
            f"{gate.uses_remaining()} left"
        )
        return await self.store.save_qrcode(gate)

    async def create(
        self,
        now: Optional[datetime] = None,
        **config
    ) -> QRCode:
        """
        Create a QR code with a fresh unique code.

        ``valid_until`` defaults by ``code_type``: products a year,
        reminders six months, prizes three months, check-ins never.
        """
        now = now or datetime.now()
        code_type = config.get('code_type', QRCodeType.SPECIAL.value)
        if 'valid_until' not in config:
            days = QRCODE_VALIDITY_DAYS.get(code_type, QRCODE_DEFAULT_VALIDITY_DAYS)
            config['valid_until'] = now + timedelta(days=days) if days else None
        config.setdefault('valid_from', now)
        config['code'] = await self.issuer.qr_code(now)
        try:
            gate = QRCode(**config)
        except ModelValidationError as err:
            raise ValidationError(
                "Invalid QR code payload",
                payload=err.payload
            ) from err
        gate = await self.store.save_qrcode(gate)
        self.logger.info(f"QR code {gate.code} created ({code_type})")
        return gate

    async def generate_batch(
        self,
        count: int,
        now: Optional[datetime] = None,
        **config
    ) -> List[QRCode]:
        if count < 1:
            raise ValidationError(
                "Batch size must be at least 1",
                payload={'count': count}
            )
        now = now or datetime.now()
        batch_id = self.issuer.batch_id(now)
        gates = []
        for _ in range(count):
            gates.append(
                await self.create(now=now, batch_id=batch_id, **config)
            )
        self.logger.info(f"Generated batch {batch_id} with {count} QR codes")
        return gates

    async def deactivate(
        self,
        gate: QRCode,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> QRCode:
        now = now or datetime.now()
        gate.is_active = False
        metadata: Dict[str, Any] = dict(gate.metadata or {})
        metadata['deactivation_reason'] = reason
        metadata['deactivated_at'] = now.isoformat()
        gate.metadata = metadata
        return await self.store.save_qrcode(gate)
