"""Device-control gateway.

The voice agent calls one tool endpoint with an ``action`` and a few
arguments; each action becomes one or more path writes under
``devices/``. The robots' firmware watches those paths and actuates.

Multi-field actions (``move``, ``stop_all``) issue independent writes
concurrently; they are not transactional.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from pyrtdb._constants import (
    ARM_ID,
    ARM_POSITIONS,
    LED_PINS,
    MOBILE_ROBOTS,
    MOTOR_DIRECTIONS,
    SERVO_ANGLE_MAX,
    SERVO_ANGLE_MIN,
    SERVO_ID_MAX,
    SERVO_ID_MIN,
)
from pyrtdb.commands import parse_number
from pyrtdb.document import JsonValue, Path
from pyrtdb.exceptions import DeviceCommandError
from pyrtdb.store.base import DocumentStore

_logger = logging.getLogger(__name__)

RobotAction = Literal[
    "move",
    "toggle_led",
    "set_led",
    "stop_all",
    "arm_position",
    "set_servo",
    "status",
    "all_status",
]


class RobotControlRequest(BaseModel):
    """Tool-call payload sent by the voice agent."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    action: RobotAction
    robot_id: str | None = None
    value: str | int | float | bool | None = None
    led: str | None = None
    servo_id: int | None = None
    angle: float | None = None
    position: str | None = None


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


class MoveResult(_Result):
    robot: str
    direction: str
    motors: dict[str, str]


class LedResult(_Result):
    robot: str
    led: str
    state: bool


class StopAllResult(_Result):
    message: str = "All mobile robots stopped"


class ArmPositionResult(_Result):
    position: str


class ServoResult(_Result):
    servo_id: int
    angle: float


class RobotStatus(_Result):
    robot: str
    data: dict[str, Any]


class FleetEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    type: str | None = None
    online: bool = False
    battery: float = 0

    # Device records are free-form; coerce rather than reject.
    @field_validator("name", "type", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("battery", mode="before")
    @classmethod
    def _as_level(cls, value: Any) -> float:
        if isinstance(value, bool) or value is None:
            return 0
        if isinstance(value, (int, float)):
            return value
        return parse_number(str(value))


class FleetStatus(_Result):
    robots: list[FleetEntry]


class FleetCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    devices: int = 0
    groups: int = 0


def _require_mobile_robot(robot_id: str | None) -> str:
    if robot_id not in MOBILE_ROBOTS:
        raise DeviceCommandError(f"Invalid robot ID: {robot_id}")
    return robot_id


def _led_pin(led: str | None) -> str:
    pin = LED_PINS.get(led or "")
    if pin is None:
        raise DeviceCommandError(f"Invalid LED: {led}")
    return pin


def _as_bool(value: str | int | float | bool) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _motor_path(robot_id: str, side: str) -> Path:
    return ("devices", robot_id, "motors", side, "state")


def _led_path(robot_id: str, pin: str) -> Path:
    return ("devices", robot_id, "leds", pin, "state")


def fleet_counts(document: JsonValue) -> FleetCounts:
    """Number of devices and groups in a mirrored document."""
    if not isinstance(document, dict):
        return FleetCounts()
    devices = document.get("devices")
    groups = document.get("groups")
    return FleetCounts(
        devices=len(devices) if isinstance(devices, (dict, list)) else 0,
        groups=len(groups) if isinstance(groups, (dict, list)) else 0,
    )


class RobotControl:
    """Translate robot actions into device-state writes."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def move(self, robot_id: str, direction: str) -> MoveResult:
        robot = _require_mobile_robot(robot_id)
        motors = MOTOR_DIRECTIONS.get(direction)
        if motors is None:
            raise DeviceCommandError(f"Invalid direction: {direction}")
        await asyncio.gather(
            self._store.set(_motor_path(robot, "left"), motors["left"]),
            self._store.set(_motor_path(robot, "right"), motors["right"]),
        )
        _logger.debug("Moved robot=%s direction=%s", robot, direction)
        return MoveResult(robot=robot, direction=direction, motors=dict(motors))

    async def toggle_led(self, robot_id: str, led: str) -> LedResult:
        robot = _require_mobile_robot(robot_id)
        path = _led_path(robot, _led_pin(led))
        # Read-then-write; a concurrent toggle can be lost.
        current = await self._store.get(path)
        state = not bool(current)
        await self._store.set(path, state)
        return LedResult(robot=robot, led=led, state=state)

    async def set_led(self, robot_id: str, led: str, state: bool) -> LedResult:
        robot = _require_mobile_robot(robot_id)
        await self._store.set(_led_path(robot, _led_pin(led)), bool(state))
        return LedResult(robot=robot, led=led, state=bool(state))

    async def stop_all(self) -> StopAllResult:
        await asyncio.gather(
            *(self._store.set(_motor_path(robot, side), "stop") for robot in MOBILE_ROBOTS for side in ("left", "right"))
        )
        _logger.debug("Stopped all mobile robots")
        return StopAllResult()

    async def set_arm_position(self, position: str) -> ArmPositionResult:
        if position not in ARM_POSITIONS:
            raise DeviceCommandError(f"Invalid position: {position}")
        await self._store.set(("devices", ARM_ID, "positions", "current"), position)
        return ArmPositionResult(position=position)

    async def set_servo_angle(self, servo_id: int, angle: float) -> ServoResult:
        if not SERVO_ID_MIN <= servo_id <= SERVO_ID_MAX:
            raise DeviceCommandError(f"Invalid servo_id: {servo_id}")
        if not SERVO_ANGLE_MIN <= angle <= SERVO_ANGLE_MAX:
            raise DeviceCommandError(f"Invalid angle: {angle}")
        value: int | float = int(angle) if float(angle).is_integer() else angle
        await self._store.set(("devices", ARM_ID, "servos", str(servo_id), "angle"), value)
        return ServoResult(servo_id=servo_id, angle=angle)

    async def robot_status(self, robot_id: str) -> RobotStatus:
        data = await self._store.get(("devices", robot_id))
        if not isinstance(data, dict) or not data:
            raise DeviceCommandError(f"Robot not found: {robot_id}")
        return RobotStatus(robot=robot_id, data=data)

    async def fleet_status(self) -> FleetStatus:
        devices = await self._store.get(("devices",))
        robots: list[FleetEntry] = []
        if isinstance(devices, dict):
            for device_id, data in devices.items():
                info = data.get("_info") if isinstance(data, dict) else None
                status = data.get("status") if isinstance(data, dict) else None
                info = info if isinstance(info, dict) else {}
                status = status if isinstance(status, dict) else {}
                robots.append(
                    FleetEntry(
                        id=device_id,
                        name=info.get("name"),
                        type=info.get("type"),
                        online=bool(status.get("online")),
                        battery=status.get("battery"),
                    )
                )
        return FleetStatus(robots=robots)

    async def handle_request(self, payload: RobotControlRequest | dict[str, Any]) -> dict[str, Any]:
        """Validate a tool-call payload and run its action."""
        if isinstance(payload, RobotControlRequest):
            request = payload
        else:
            try:
                request = RobotControlRequest.model_validate(payload)
            except ValidationError as exc:
                raise DeviceCommandError(f"Invalid request: {exc.errors()[0]['msg']}") from exc

        _logger.debug("Robot action=%s robot=%s", request.action, request.robot_id)
        result: _Result
        if request.action == "move":
            if not request.robot_id or not request.value:
                raise DeviceCommandError("Missing robot_id or value")
            result = await self.move(request.robot_id, str(request.value))
        elif request.action == "toggle_led":
            if not request.robot_id or not request.led:
                raise DeviceCommandError("Missing robot_id or led")
            result = await self.toggle_led(request.robot_id, request.led)
        elif request.action == "set_led":
            if not request.robot_id or not request.led or request.value is None:
                raise DeviceCommandError("Missing robot_id, led, or value")
            result = await self.set_led(request.robot_id, request.led, _as_bool(request.value))
        elif request.action == "stop_all":
            result = await self.stop_all()
        elif request.action == "arm_position":
            if not request.position:
                raise DeviceCommandError("Missing position")
            result = await self.set_arm_position(request.position)
        elif request.action == "set_servo":
            if not request.servo_id or request.angle is None:
                raise DeviceCommandError("Missing servo_id or angle")
            result = await self.set_servo_angle(request.servo_id, request.angle)
        elif request.action == "status":
            if not request.robot_id:
                raise DeviceCommandError("Missing robot_id")
            result = await self.robot_status(request.robot_id)
        else:
            result = await self.fleet_status()
        return result.model_dump()
