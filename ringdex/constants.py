"""
RingDEX Constants

Protocol constants and environment configuration used throughout the
codebase. Logging settings are read once from ``.env`` at import time.
"""
import ast

from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE PROTOCOL VALUES BELOW ARE PART OF THE ORDER HASH AND SETTLEMENT
# SEMANTICS. CHANGING THEM INVALIDATES EVERY SIGNED ORDER IN CIRCULATION.

# ==================================================================================
# RING PROTOCOL CONSTANTS
# ==================================================================================
NODE_VERSION = '1.0.0'
ZERO_ADDRESS = '0x' + '00' * 20

MIN_RING_SIZE = 2
DEFAULT_MAX_RING_SIZE = 4

# Fixed-point scale for execution-rate ratios
RATE_RATIO_SCALE = 10_000
# Maximum CV^2 (scaled by RATE_RATIO_SCALE^2) of the ring's rate ratios.
# 62500 is a 2.5% standard deviation around the mean ratio.
DEFAULT_RATE_RATIO_CVS_THRESHOLD = 62_500

MARGIN_SPLIT_PERCENTAGE_BASE = 100

# Per-order input widths for submit_ring
ADDRESS_ARGS_WIDTH = 2   # owner, sell token
UINT_ARGS_WIDTH = 8      # sell, buy, created_at, ttl, salt, fee, rate sell, rate buy
UINT8_ARGS_WIDTH = 2     # margin split percentage, fee selection


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default


class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
namespace = globals()


def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v


for key, default_raw in LOGGER_DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
