from __future__ import annotations

from enum import Enum, IntEnum, IntFlag


class ConnectionState(Enum):
    """Lifecycle of one device session.

    FAILED is terminal for the session; it is reported to the application
    as a disconnect.
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    DISCOVERING_CONTROL_SERVICE = "discovering_control_service"
    RUNNING_HANDSHAKE = "running_handshake"
    SUBSCRIBING_NOTIFICATIONS = "subscribing_notifications"
    READY = "ready"
    FAILED = "failed"


class ResponseKind(Enum):
    """Type tag of an inbound frame."""
    ACK = "ack"                    # answer to a synchronous command
    NOTIFICATION = "notification"  # unsolicited, asynchronous


class V1Flag(IntFlag):
    """Flag bits of a v1 command header (ORed into 0xFC)."""
    RESET_TIMEOUT = 0x01
    SYNCHRONOUS = 0x02


class V2Flag(IntFlag):
    """Flag bits of a v2 packet."""
    IS_RESPONSE = 0x01       # response packets carry an error code byte
    SYNCHRONOUS = 0x02
    REPORT_ERROR = 0x04
    RESET_TIMEOUT = 0x08
    HAS_TARGET_NODE = 0x10
    HAS_SOURCE_NODE = 0x20
    RESERVED = 0x40
    TWO_BYTE_FLAGS = 0x80


class V1DeviceId(IntEnum):
    """Command targets ("device ids") of the v1 protocol."""
    CORE = 0x00
    BOOTLOADER = 0x01
    SPHERO = 0x02


class V2Target(IntEnum):
    """Command targets of the v2 protocol."""
    INTERNAL = 0x00
    PING_PONG = 0x10
    INFO = 0x11
    DRIVING = 0x12
    POWER = 0x13
    CAR_CONTROL = 0x16
    ANIMATION = 0x17
    SENSORS = 0x18
    AV_CONTROL = 0x1A
    UNKNOWN = 0x1F


class V1ResponseCode(IntEnum):
    """Message response codes of v1 acknowledgments."""
    OK = 0x00
    GENERAL_ERROR = 0x01
    CHECKSUM_FAILURE = 0x02
    FRAGMENT = 0x03
    UNKNOWN_COMMAND = 0x04
    UNSUPPORTED_COMMAND = 0x05
    BAD_MESSAGE_FORMAT = 0x06
    INVALID_PARAMETER = 0x07
    EXECUTION_FAILED = 0x08
    UNKNOWN_DEVICE = 0x09
    VOLTAGE_TOO_LOW = 0x31
    ILLEGAL_PAGE = 0x32
    FLASH_FAILED = 0x33
    MAIN_APPLICATION_CORRUPT = 0x34
    TIMEOUT = 0x35


class V1NotificationId(IntEnum):
    """Id codes of v1 asynchronous notifications."""
    POWER = 0x01
    LEVEL1_DIAGNOSTIC = 0x02
    SENSOR_STREAM = 0x03
    CONFIG_BLOCK = 0x04
    SLEEPING_IN_10_SEC = 0x05
    MACRO_MARKERS = 0x06
    COLLISION = 0x07
    ORB_PRINT = 0x08
    ORB_BASIC_ERROR_ASCII = 0x09
    ORB_BASIC_ERROR_BINARY = 0x0A
    SELF_LEVEL_COMPLETE = 0x0B
    GYRO_RANGE_EXCEEDED = 0x0C
    SOUL_DATA = 0x0D
    SOUL_LEVEL_UP = 0x0E
    SOUL_SHIELD = 0x0F
    BOOST = 0x11
    OVAL_ERROR = 0x12
    OVAL_DEV = 0x13
    SLEEP = 0x14
    SOUL_BLOCK_DATA = 0x20
    XP_UPDATE = 0x21


class V2ErrorCode(IntEnum):
    """Error codes carried by v2 responses."""
    SUCCESS = 0x00
    BAD_DEVICE_ID = 0x01
    BAD_COMMAND_ID = 0x02
    NOT_YET_IMPLEMENTED = 0x03
    COMMAND_RESTRICTED = 0x04
    BAD_DATA_LENGTH = 0x05
    COMMAND_FAILED = 0x06
    BAD_PARAMETER_VALUE = 0x07
    BUSY = 0x08
    BAD_TARGET_ID = 0x09
    TARGET_UNAVAILABLE = 0x0A


class PowerState(IntEnum):
    """Battery charge state reported by the power state record."""
    CHARGING = 0x01
    OK = 0x02
    LOW = 0x03
    CRITICAL = 0x04


class RollMode(IntEnum):
    BRAKE = 0
    ROLL = 1
    CALIBRATE = 2


class DriveFlag(IntFlag):
    """Flags of the v2 drive-with-heading command."""
    NONE = 0
    REVERSE = 1 << 0
    BOOST = 1 << 1
    FAST_TURN = 1 << 2
    REVERSE_LEFT_MOTOR = 1 << 3
    REVERSE_RIGHT_MOTOR = 1 << 4


class OptionFlag(IntFlag):
    """Persistent option flags (v1 set option flags)."""
    PREVENT_SLEEP_IN_CHARGER = 1 << 0
    ENABLE_VECTOR_DRIVE = 1 << 1
    DISABLE_SELF_LEVEL_IN_CHARGER = 1 << 2
    TAIL_LIGHT_ALWAYS_ON = 1 << 3
    ENABLE_MOTION_TIMEOUT = 1 << 4
    DEMO_MODE = 1 << 5
    LIGHT_DOUBLE_TAP = 1 << 6
    HEAVY_DOUBLE_TAP = 1 << 7
    GYRO_MAX_ASYNC = 1 << 8
    ENABLE_SOUL = 1 << 9
    SLEW_RAW_MOTORS = 1 << 10


class NonPersistentOptionFlag(IntFlag):
    STOP_ON_DISCONNECT = 1
    COMPATIBILITY_MODE = 2


class ColorLED(IntEnum):
    """Addressable RGB LED groups of v2 droids."""
    BACK = 0b111 << 12
    R2_BODY = 0b111 << 8
    BB9E_BODY = 0b10111 << 8
    BB9E_HEAD = 1 << 12


class Stance(IntEnum):
    TRIPOD = 0
    BIPOD = 1
