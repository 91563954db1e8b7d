"""Gym Rewards external models."""
from .client import Client

__all__ = (
    'Client',
)
