"""Internal constants shared across the library."""

USER_AGENT = "pyrtdb"

#: Nodes shallower than this start expanded in the tree view.
DEFAULT_EXPANDED_DEPTH = 2

#: Default traversal bound for the tree view.
DEFAULT_MAX_DEPTH = 32

#: Seconds a status banner message stays visible.
DEFAULT_BANNER_TTL = 3.0

EXPORT_FILENAME_PREFIX = "export-"

# ------------------------------------------------------------------
# Device fleet layout
# ------------------------------------------------------------------

MOBILE_ROBOTS: tuple[str, ...] = ("robot-1", "robot-2")
ARM_ID = "robot-arm"

LED_PINS: dict[str, str] = {"front": "2", "back": "13"}

MOTOR_DIRECTIONS: dict[str, dict[str, str]] = {
    "forward": {"left": "forward", "right": "forward"},
    "backward": {"left": "backward", "right": "backward"},
    "left": {"left": "backward", "right": "forward"},
    "right": {"left": "forward", "right": "backward"},
    "stop": {"left": "stop", "right": "stop"},
}

ARM_POSITIONS: tuple[str, ...] = ("home", "rest", "pick", "place", "wave", "stretch", "grab", "release")

SERVO_ID_MIN = 1
SERVO_ID_MAX = 6
SERVO_ANGLE_MIN = 0
SERVO_ANGLE_MAX = 180
