"""
Player pool used to mint pack cards.

Pack opening asks the pool for `n` players; weighting and exclusion rules
belong here, not in the trade engine.
"""

import random
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchbank.config import settings
from matchbank.models.db import PlayerReferenceDB
from matchbank.models.enums import Position
from matchbank.models.player import PlayerSnapshot


class PlayerPool(Protocol):
    async def sample(self, session: AsyncSession, n: int) -> list[PlayerSnapshot]:
        """
        Draw `n` players with replacement.

        Returns an empty list if the pool has no players.
        """

        ...


class DatabasePlayerPool:
    """
    Uniform draw with replacement over a bounded sample of player references.

    The sample is the first `sample_size` references by id; each of the `n`
    draws picks uniformly from it.
    """

    def __init__(self, sample_size: int | None = None, rng: random.Random | None = None) -> None:
        self.sample_size = settings.player_pool_sample_size if sample_size is None else sample_size
        self._rng = rng or random.Random()

    async def sample(self, session: AsyncSession, n: int) -> list[PlayerSnapshot]:
        if n <= 0:
            return []

        result = await session.execute(
            select(PlayerReferenceDB).order_by(PlayerReferenceDB.id).limit(self.sample_size)
        )
        candidates = [
            PlayerSnapshot(
                id=ref.id,
                name=ref.name,
                club=ref.club,
                position=Position.parse(ref.position),
            )
            for ref in result.scalars().all()
        ]
        if not candidates:
            return []

        return [self._rng.choice(candidates) for _ in range(n)]
