"""Shared fixtures for the Gym Rewards tests."""
import os
import pathlib

# navconfig resolves the project root (and env/.env) from SITE_ROOT.
os.environ.setdefault("SITE_ROOT", str(pathlib.Path(__file__).resolve().parent.parent))

import random
import pytest
from unittest.mock import AsyncMock
from datetime import datetime, date, timedelta

from gym_rewards.models import Client
from gym_rewards.prizes import (
    Prize,
    Roulette,
    RouletteSector,
    PrizeWinning,
    QRCode,
    MemoryStore,
    ClientDirectory,
    MembershipService,
    PointsLedger,
    OrderService,
    Notifier,
    PrizeEngine,
)


# Wednesday; the week started on Sunday 2026-03-08
NOW = datetime(2026, 3, 11, 10, 0)
PAST = NOW - timedelta(days=60)


class FakeDirectory(ClientDirectory):
    def __init__(self, clients=None):
        self.clients = {c.client_id: c for c in clients or []}

    def add(self, client: Client) -> Client:
        self.clients[client.client_id] = client
        return client

    async def get_client(self, client_id):
        return self.clients.get(client_id)


def make_client(client_id=1, **kwargs):
    data = {
        'client_id': client_id,
        'first_name': 'Ana',
        'last_name': 'Lopez',
        'email': f'client{client_id}@gym.test',
        'birth_date': date(1990, 5, 20),
        'registration_date': NOW - timedelta(days=400),
        'membership_id': 100 + client_id,
        'membership_type_id': 1,
    }
    data.update(kwargs)
    return Client(**data)


def add_prize(store: MemoryStore, **kwargs) -> Prize:
    data = {
        'name': 'Protein Shake',
        'prize_type': 'other',
        'category': 'basic',
        'value': 0.0,
        'valid_from': PAST,
    }
    data.update(kwargs)
    prize = Prize(**data)
    prize.prize_id = store._next_id('prize')
    store.prizes[prize.prize_id] = prize
    return prize


def add_roulette(store: MemoryStore, weights, **kwargs) -> Roulette:
    """``weights`` is a list of ``(prize_id, probability)`` pairs."""
    data = {
        'name': 'Daily Wheel',
        'category': 'basic',
        'valid_from': PAST,
        'sectors': [
            RouletteSector(prize_id=prize_id, probability=float(weight), index=i)
            for i, (prize_id, weight) in enumerate(weights)
        ],
    }
    data.update(kwargs)
    roulette = Roulette(**data)
    roulette.roulette_id = store._next_id('roulette')
    store.roulettes[roulette.roulette_id] = roulette
    return roulette


def add_qrcode(store: MemoryStore, **kwargs) -> QRCode:
    data = {
        'code': f"QR-TEST-{len(store.qrcodes) + 1:04d}",
        'code_type': 'prize',
        'valid_from': PAST,
        'valid_until': NOW + timedelta(days=30),
    }
    data.update(kwargs)
    gate = QRCode(**data)
    gate.qr_code_id = store._next_id('qrcode')
    store.qrcodes[gate.qr_code_id] = gate
    return gate


def add_winning(store: MemoryStore, prize: Prize, client_id=1, **kwargs) -> PrizeWinning:
    data = {
        'client_id': client_id,
        'prize_id': prize.prize_id,
        'prize_name': prize.name,
        'prize_type': prize.prize_type,
        'won_at': NOW - timedelta(hours=1),
    }
    data.update(kwargs)
    winning = PrizeWinning(**data)
    winning.winning_id = store._next_id('winning')
    store.winnings[winning.winning_id] = winning
    return winning


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clients():
    return FakeDirectory([
        make_client(1),
        make_client(2, first_name='Luis'),
        make_client(3, birth_date=None),
    ])


@pytest.fixture
def membership():
    service = AsyncMock(spec=MembershipService)
    service.extend_membership.return_value = 501
    return service


@pytest.fixture
def points():
    return AsyncMock(spec=PointsLedger)


@pytest.fixture
def orders():
    service = AsyncMock(spec=OrderService)
    service.create_free_order.return_value = 9001
    return service


@pytest.fixture
def notifier():
    return AsyncMock(spec=Notifier)


@pytest.fixture
def engine(store, clients, membership, points, orders, notifier):
    return PrizeEngine(
        store,
        clients,
        membership=membership,
        points=points,
        orders=orders,
        notifier=notifier,
        rng=random.Random(42),
        code_rng=random.Random(7)
    )
