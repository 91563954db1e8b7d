"""Redemption and QR code generation."""
from typing import Optional
from datetime import datetime
import secrets

from navconfig.logging import logging

from ..conf import (
    REDEMPTION_CODE_ALPHABET,
    REDEMPTION_CODE_LENGTH,
    REDEMPTION_CODE_MAX_ATTEMPTS,
)
from ..exceptions import CodeGenerationExhausted
from .storage import RewardStore


BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def to_base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36[rem])
    return ''.join(reversed(digits))


class RedemptionCodeIssuer:
    """
    Issues short human-readable redemption codes and QR code strings.

    Uniqueness is checked against storage; generation gives up after
    ``max_attempts`` collisions. ``rng`` only needs ``choice()`` and
    ``getrandbits()`` and defaults to the OS CSPRNG.
    """

    def __init__(
        self,
        store: RewardStore,
        rng=None,
        length: int = REDEMPTION_CODE_LENGTH,
        alphabet: str = REDEMPTION_CODE_ALPHABET,
        max_attempts: int = REDEMPTION_CODE_MAX_ATTEMPTS,
        logger=None
    ):
        self.store = store
        self.rng = rng or secrets.SystemRandom()
        self.length = length
        self.alphabet = alphabet
        self.max_attempts = max_attempts
        self.logger = logger or logging.getLogger('Rewards.Codes')

    def generate(self) -> str:
        return ''.join(
            self.rng.choice(self.alphabet) for _ in range(self.length)
        )

    async def issue(self) -> str:
        """A redemption code not held by any non-cancelled winning."""
        for attempt in range(1, self.max_attempts + 1):
            code = self.generate()
            if not await self.store.redemption_code_exists(code):
                return code
            self.logger.debug(
                f"Redemption code collision on attempt {attempt}"
            )
        raise CodeGenerationExhausted(
            f"Could not generate a unique redemption code "
            f"after {self.max_attempts} attempts"
        )

    def generate_qr(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        stamp = to_base36(int(now.timestamp() * 1000)).upper()
        return f"QR-{stamp}-{self.rng.getrandbits(64):016X}"

    async def qr_code(self, now: Optional[datetime] = None) -> str:
        """A QR code string not used by any other scan gate."""
        for _ in range(self.max_attempts):
            code = self.generate_qr(now)
            if not await self.store.qrcode_exists(code):
                return code
        raise CodeGenerationExhausted(
            f"Could not generate a unique QR code "
            f"after {self.max_attempts} attempts"
        )

    def batch_id(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        stamp = to_base36(int(now.timestamp() * 1000)).upper()
        return f"BATCH-{stamp}-{self.rng.getrandbits(32):08X}"
