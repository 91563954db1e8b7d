"""
Roulette: weighted prize selection and configuration management.
"""
from typing import Optional, List, Union, Dict, Any
from datetime import datetime
import random
import re

from navconfig.logging import logging
from datamodel.exceptions import ValidationError as ModelValidationError

from ..conf import PROBABILITY_TOTAL, PROBABILITY_TOLERANCE
from ..exceptions import ValidationError, NotFoundError
from .models import Roulette
from .results import SectorChoice
from .storage import RewardStore
from .limits import KeyedLock, LimitGuard


HEX_COLOR = re.compile(r'^#[0-9A-Fa-f]{6}$')


class WeightedSelector:
    """
    Picks a roulette sector proportionally to its weight.

    The random source can be injected (a seeded ``random.Random``) so a
    draw can be replayed for audits.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def select(self, roulette: Roulette) -> SectorChoice:
        sectors = roulette.ordered_sectors()
        if not sectors:
            raise ValidationError(
                f"Roulette '{roulette.name}' has no sectors",
                payload={'sectors': 'At least one sector is required'}
            )

        draw = self.rng.random() * PROBABILITY_TOTAL
        cumulative = 0.0
        chosen = None
        for sector in sectors:
            if sector.probability <= 0:
                continue
            cumulative += sector.probability
            if draw <= cumulative:
                chosen = sector
                break

        if chosen is None:
            # float accumulation can leave the top of the range uncovered
            weighted = [s for s in sectors if s.probability > 0]
            chosen = weighted[-1] if weighted else sectors[-1]

        return SectorChoice(
            prize_id=chosen.prize_id,
            sector_index=chosen.index,
            probability=chosen.probability,
            draw=draw
        )


async def validate_configuration(roulette: Roulette, store: RewardStore) -> None:
    """
    Validate a roulette before it is saved.

    Raises:
        ValidationError: with a payload keyed by the failing field.
    """
    errors: Dict[str, Any] = {}

    for attr in ('theme_color', 'background_color'):
        value = getattr(roulette, attr)
        if value and not HEX_COLOR.match(value):
            errors[attr] = f"Invalid hex colour: {value}"

    if not roulette.sectors:
        errors['sectors'] = "At least one sector is required"
    else:
        total = 0.0
        for pos, sector in enumerate(roulette.sectors):
            if sector.probability < 0:
                errors[f'sectors[{pos}].probability'] = (
                    f"Probability cannot be negative: {sector.probability}"
                )
            total += sector.probability
            if sector.color and not HEX_COLOR.match(sector.color):
                errors[f'sectors[{pos}].color'] = (
                    f"Invalid hex colour: {sector.color}"
                )
            if await store.get_prize(sector.prize_id) is None:
                errors[f'sectors[{pos}].prize_id'] = (
                    f"Prize {sector.prize_id} does not exist"
                )
        if abs(total - PROBABILITY_TOTAL) > PROBABILITY_TOLERANCE:
            errors['probability'] = (
                f"Sector probabilities must add up to {PROBABILITY_TOTAL:g}, "
                f"got {total:.2f}"
            )

    if errors:
        raise ValidationError(
            f"Invalid roulette configuration '{roulette.name}'",
            payload=errors
        )


class RouletteRegistry:
    """Saves roulettes and resolves the default wheel of a category."""

    def __init__(
        self,
        store: RewardStore,
        locks: Optional[KeyedLock] = None,
        guard: Optional[LimitGuard] = None,
        logger=None
    ):
        self.store = store
        self.locks = locks or KeyedLock()
        self.guard = guard or LimitGuard(store)
        self.logger = logger or logging.getLogger('Rewards.Roulette')

    @staticmethod
    def build(data: Union[Roulette, Dict[str, Any]]) -> Roulette:
        if isinstance(data, Roulette):
            return data
        try:
            return Roulette(**data)
        except ModelValidationError as err:
            raise ValidationError(
                "Invalid roulette payload",
                payload=err.payload
            ) from err
        except ValueError as err:
            raise ValidationError(str(err)) from err

    async def save(self, data: Union[Roulette, Dict[str, Any]]) -> Roulette:
        """
        Validate and store a roulette.

        When it is saved as default, every other default of the same
        category is cleared, so each category keeps at most one.
        """
        roulette = self.build(data)
        await validate_configuration(roulette, self.store)

        async with self.locks.hold(f"category:{roulette.category}"):
            cleared = 0
            if roulette.is_default:
                cleared = await self.store.clear_default(
                    roulette.category,
                    keep_id=roulette.roulette_id
                )
            saved = await self.store.save_roulette(roulette)
            if cleared:
                self.logger.info(
                    f"Roulette {saved.roulette_id} is now the default for "
                    f"'{saved.category}' ({cleared} previous default cleared)"
                )
        return saved

    async def get(self, roulette_id: int) -> Roulette:
        roulette = await self.store.get_roulette(roulette_id)
        if roulette is None:
            raise NotFoundError(f"Roulette {roulette_id} not found")
        return roulette

    async def default_for(self, category: str) -> Roulette:
        for roulette in await self.store.list_roulettes(category=category):
            if roulette.is_default and roulette.is_active:
                return roulette
        raise NotFoundError(
            f"No default roulette available for category '{category}'"
        )

    async def available(
        self,
        now: Optional[datetime] = None,
        category: Optional[str] = None
    ) -> List[Roulette]:
        """Roulettes open right now, defaults first, then by name."""
        now = now or datetime.now()
        roulettes = [
            r for r in await self.store.list_roulettes(category=category)
            if self.guard.availability(r, now)
        ]
        return sorted(roulettes, key=lambda r: (not r.is_default, r.name))
