"""Gym Rewards: prize selection and redemption engine for gym clients."""

__version__ = '1.0.0'
