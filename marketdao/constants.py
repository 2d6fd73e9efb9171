"""
MarketDAO Constants

Ledger identifiers, governance defaults and flag bits, plus the logging
settings read from a local .env file.
"""
import os

from dotenv import dotenv_values

# =============================================================================
# LOGGING (from .env, process environment wins)
# =============================================================================
_dotenv = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                'INFO',
    'LOG_FORMAT':               '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':          '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING': 'true',
    'LOG_FILE_OUTPUT':          'false',
}


def env_setting(key: str) -> str:
    """Value of *key* from the environment, then .env, then the default."""
    value = os.environ.get(key) or _dotenv.get(key)
    return value if value else LOGGER_DEFAULTS[key]


def parse_bool(value: str, default: bool = False) -> bool:
    text = str(value).strip().casefold()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


LOG_LEVEL = env_setting('LOG_LEVEL').upper()
LOG_FORMAT = env_setting('LOG_FORMAT')
LOG_DATE_FORMAT = env_setting('LOG_DATE_FORMAT')
LOG_CONSOLE_HIGHLIGHTING = parse_bool(env_setting('LOG_CONSOLE_HIGHLIGHTING'), True)
LOG_FILE_OUTPUT = parse_bool(env_setting('LOG_FILE_OUTPUT'), False)

LOG_MAX_FILE_SIZE = 5 * 1024 * 1024   # 5MB
LOG_BACKUP_COUNT = 3


# ==================================================================================
# LEDGER
# ==================================================================================
MEMBERSHIP_TOKEN_ID = 0       # Permanent, transferable governance token
FIRST_VOTING_TOKEN_ID = 1     # Voting assets are allocated upwards from here
DAO_ACCOUNT = "dao"           # Ledger account holding DAO-owned membership tokens


# ==================================================================================
# GOVERNANCE
# ==================================================================================
BASIS_POINTS = 10_000
MAX_VESTING_SCHEDULES = 10    # Concurrent unlock heights per holder

DEFAULT_SUPPORT_THRESHOLD_BP = 2000    # 20% of vested supply triggers an election
DEFAULT_QUORUM_PERCENTAGE_BP = 2500    # 25% of the snapshot must participate
DEFAULT_MAX_PROPOSAL_AGE = 100         # blocks
DEFAULT_ELECTION_DURATION = 50         # blocks
DEFAULT_VESTING_PERIOD = 100           # blocks
DEFAULT_TOKEN_PRICE = 0                # 0 disables direct purchase

# Configuration flag bits (packed into one integer by set_flags)
FLAG_ALLOW_MINTING = 1
FLAG_RESTRICT_PURCHASES = 2
FLAG_MINT_ON_PURCHASE = 4
FLAG_MASK = FLAG_ALLOW_MINTING | FLAG_RESTRICT_PURCHASES | FLAG_MINT_ON_PURCHASE

# Vote sink derivation
SINK_DOMAIN = b"MarketDAO-vote-sink-v1"
SINK_TAG_YES = "yes"
SINK_TAG_NO = "no"
SINK_DIGEST_SIZE = 20
DEFAULT_SINK_SALT = "marketdao-default-salt"
