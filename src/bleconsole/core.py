"""
Core constants for the BLE console.
"""

# Connection timeout (seconds) and the range accepted by the "timeout" command
DEFAULT_TIMEOUT = 3.0
TIMEOUT_MIN = 1
TIMEOUT_MAX = 59

# Pause between read attempts of the retry-read protocol (seconds)
RETRY_INTERVAL = 0.2

# Pause after a write so an asynchronous notification can arrive before "wait"
WRITE_SETTLE_DELAY = 0.2

# A retried read counts as meaningful once its rendered text is longer than this
MEANINGFUL_LENGTH = 2

# Exit code contributed when a retry-read gives up without a meaningful value
RETRY_TIMEOUT_EXIT_CODE = 250

# Timestamp format used in the retry-read log file name
LOG_TIMESTAMP_FORMAT = "%Y-%m-%d_%I-%M-%S-%p"

# Application metadata
__version__ = "0.1.0"
__description__ = "Interactive console for exploring BLE GATT peripherals"
