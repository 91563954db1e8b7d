"""
Gym Rewards configuration.

Values are read from the navconfig environment (``env/.env`` or the
process environment) and can be overridden per deployment.
"""
from navconfig import config


REWARDS_SCHEMA = config.get('REWARDS_SCHEMA', fallback='gym')
PRIZE_CURRENCY = config.get('PRIZE_CURRENCY', fallback='GTQ')

# Redemption codes: no 0/O and no 1/I to avoid misreadings at the desk.
REDEMPTION_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
REDEMPTION_CODE_LENGTH = config.getint('REDEMPTION_CODE_LENGTH', fallback=8)
REDEMPTION_CODE_MAX_ATTEMPTS = config.getint(
    'REDEMPTION_CODE_MAX_ATTEMPTS',
    fallback=10
)

# Roulette sector weights must add up to 100 within this tolerance.
PROBABILITY_TOTAL = 100.0
PROBABILITY_TOLERANCE = float(
    config.get('PROBABILITY_TOLERANCE', fallback='0.01')
)

# Expiration sweep
EXPIRATION_SWEEP_HOUR = config.getint('EXPIRATION_SWEEP_HOUR', fallback=2)
EXPIRING_SOON_DAYS = config.getint('EXPIRING_SOON_DAYS', fallback=3)

# Scan gates
DEFAULT_LOCATION_RADIUS = 100  # metres
QRCODE_VALIDITY_DAYS = {
    'product': 365,
    'reminder': 180,
    'prize': 90,
    'checkin': None,
}
QRCODE_DEFAULT_VALIDITY_DAYS = 365

# Notifications
REWARDS_TEAMS_WEBHOOK = config.get('REWARDS_TEAMS_WEBHOOK', fallback=None)
REWARDS_WEBHOOK_TIMEOUT = config.getint('REWARDS_WEBHOOK_TIMEOUT', fallback=10)
