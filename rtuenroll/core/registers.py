"""Register map of the enrollable sensors and light fixtures."""

REG_DEVICE_TYPE = 1
REG_PRESENCE = 2
REG_SERIAL = 3
REG_LIGHT_TIMEOUT = 3
REG_SET_ADDRESS = 4
REG_REBOOT = 17
REG_STATUS_FLAGS = 255

# Light block write, one FC16 frame over registers 4..7.
REG_LIGHT_MODE = 4
REG_LIGHT_ADDRESS = 5
REG_LIGHT_BAUD = 6
REG_LIGHT_KEY = 7

REBOOT_SENTINEL = 42330
LIGHT_BAUD = 9600
LIGHT_SECURITY_KEY = 0x8F8F
LIGHT_TIMEOUT_MODES = (0, 180)

BUZZER_BIT = 1 << 9

FACTORY_DEFAULT_ADDRESS = 1
MIN_ADDRESS = 1
MAX_ADDRESS = 247
