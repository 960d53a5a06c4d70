"""
Art-Net Fixture Protocol - State Model, Intents and Bus Payloads
================================================================

This module holds the pure, side-effect free half of the fixture core:

- Color/Value Model: per-variant role tables and ColorState helpers
- Intent Normalizer: turns raw host messages into a FixtureAction
- Payload Encoder: turns a ColorState into Art-Net bucket payloads

Supported fixture variants:
- SINGLE: one dimmer channel            (value)
- RGB:    three channels                (red, green, blue)
- RGBW:   four channels                 (red, green, blue, white)

A ColorState is a plain dict of role name -> intensity (0-255). Values are
passed through unchanged; range checking is left to the bus node.
"""

import copy
import logging
from enum import IntEnum
from typing import Optional


logger = logging.getLogger(__name__)


# Message field names shared with the host flow runtime
STATUS_ECHO_MARKER = "isGUIUpdate"
DEFAULT_TRANSITION = "linear"
DEFAULT_RECORD_SUFFIX = "_default"


class DeviceType(IntEnum):
    """Fixture variant, as stored in the node's deviceType config field"""
    SINGLE = 0     # Dimmable lamp or stripe with one channel
    RGB = 1        # RGB stripe or lamp
    RGBW = 2       # RGBW stripe or lamp


class ActionType(IntEnum):
    """Canonical actions understood by the dispatcher"""
    ON = 1
    OFF = 2
    SETVALUE = 3         # Single channel variant only
    SETCOLOR = 4         # RGB/RGBW only
    SETSINGLECOLOR = 5   # RGB/RGBW only, one role at a time (dashboard sliders)
    SAVEDEFAULT = 6


# Role order is channel order on the bus
DEVICE_ROLES = {
    DeviceType.SINGLE: ("value",),
    DeviceType.RGB: ("red", "green", "blue"),
    DeviceType.RGBW: ("red", "green", "blue", "white"),
}

SUPPORTED_ACTIONS = {
    DeviceType.SINGLE: frozenset({ActionType.ON, ActionType.OFF,
                                  ActionType.SETVALUE, ActionType.SAVEDEFAULT}),
    DeviceType.RGB: frozenset({ActionType.ON, ActionType.OFF, ActionType.SETCOLOR,
                               ActionType.SETSINGLECOLOR, ActionType.SAVEDEFAULT}),
    DeviceType.RGBW: frozenset({ActionType.ON, ActionType.OFF, ActionType.SETCOLOR,
                                ActionType.SETSINGLECOLOR, ActionType.SAVEDEFAULT}),
}


def parse_device_type(value) -> DeviceType:
    """
    Parse a deviceType config value.

    Args:
        value: DeviceType, int, numeric string ("2") or name ("rgbw")

    Returns:
        DeviceType

    Raises:
        ValueError: if the value names no known variant
    """
    if isinstance(value, DeviceType):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.upper() in DeviceType.__members__:
            return DeviceType[text.upper()]
        value = text
    try:
        return DeviceType(int(value))
    except (TypeError, ValueError):
        raise ValueError(f"Unknown device type: {value!r}")


def get_roles(device_type: DeviceType) -> tuple:
    """Return the ordered role names (one per channel) for a variant."""
    return DEVICE_ROLES[device_type]


def get_channel_count(device_type: DeviceType) -> int:
    return len(DEVICE_ROLES[device_type])


# Color/Value Model

def make_off_state(device_type: DeviceType) -> dict:
    """Return the all-zero ColorState for a variant."""
    return {role: 0 for role in DEVICE_ROLES[device_type]}


def default_state(state: Optional[dict], device_type: DeviceType) -> dict:
    """
    Return a new ColorState holding exactly the roles of the variant.

    Missing or None roles become 0, everything else is copied as-is, so
    the result is safe to store in a different slot than the input.
    default_state(default_state(s)) == default_state(s).

    Args:
        state: Partial ColorState (may be None)
        device_type: Fixture variant

    Returns:
        New dict with every role of the variant present
    """
    state = state or {}
    result = {}
    for role in DEVICE_ROLES[device_type]:
        value = state.get(role)
        result[role] = 0 if value is None else copy.deepcopy(value)
    return result


def copy_state(state: dict) -> dict:
    """Deep-copy a ColorState so that slots never share storage."""
    return copy.deepcopy(state)


def state_values(state: dict, device_type: DeviceType) -> list:
    """Return the state's intensities in channel order."""
    return [state[role] for role in DEVICE_ROLES[device_type]]


def hex_to_color(hex_value: str, device_type: DeviceType) -> dict:
    """
    Decode a '#RRGGBB' or '#RRGGBBWW' string into a ColorState.

    Roles not covered by the string (white for a 6-digit value) become 0.
    Digits beyond the variant's roles are ignored.

    Args:
        hex_value: Hex color string, leading '#' optional
        device_type: RGB or RGBW

    Returns:
        Defaulted ColorState

    Raises:
        ValueError: if the string is not a valid hex color or the variant
                    has no color roles
    """
    if device_type == DeviceType.SINGLE:
        raise ValueError("Single channel fixtures have no color roles")

    digits = hex_value.strip().lstrip('#')
    if len(digits) not in (6, 8):
        raise ValueError(f"Invalid hex color: {hex_value!r}")

    color = {}
    for i, role in enumerate(("red", "green", "blue", "white")):
        pair = digits[i * 2:i * 2 + 2]
        if pair:
            color[role] = int(pair, 16)
    return default_state(color, device_type)


def color_to_hex(state: dict, device_type: DeviceType) -> str:
    """
    Encode a ColorState as '#RRGGBB' (RGB) or '#RRGGBBWW' (RGBW).

    Raises:
        ValueError: for single channel fixtures
    """
    if device_type == DeviceType.SINGLE:
        raise ValueError("Single channel fixtures have no color roles")
    state = default_state(state, device_type)
    return "#" + "".join(f"{int(v) & 0xFF:02x}" for v in state_values(state, device_type))


# Intent Normalizer

class FixtureAction:
    """One canonical action, built once per inbound message."""
    def __init__(self,
                 action_type: ActionType,
                 value=None,
                 color: Optional[dict] = None,
                 role: Optional[str] = None,
                 check_on: bool = False,
                 soft_change: bool = False,
                 soft_change_duration: int = 0,
                 transition: Optional[str] = None):
        self.action_type: ActionType = action_type
        self.value = value                      # SETVALUE / SETSINGLECOLOR
        self.color: Optional[dict] = color      # SETCOLOR, optional for ON
        self.role: Optional[str] = role         # SETSINGLECOLOR
        self.check_on: bool = check_on          # Gate SETSINGLECOLOR output on is_on
        self.soft_change: bool = soft_change
        self.soft_change_duration: int = soft_change_duration
        self.transition: Optional[str] = transition

    @property
    def duration(self) -> int:
        """Resolved transition duration in ms (0 = apply immediately)."""
        if self.soft_change and self.soft_change_duration:
            return self.soft_change_duration
        return 0

    @property
    def easing(self) -> str:
        return self.transition if self.transition else DEFAULT_TRANSITION

    def __repr__(self):
        return (f"FixtureAction({self.action_type.name}, value={self.value!r}, "
                f"color={self.color!r}, role={self.role!r}, check_on={self.check_on}, "
                f"duration={self.duration}, easing={self.easing!r})")


def is_status_echo(msg) -> bool:
    """True if the message is a status echo this core sent itself."""
    if not isinstance(msg, dict):
        return False
    if msg.get(STATUS_ECHO_MARKER):
        return True
    payload = msg.get("payload")
    return isinstance(payload, dict) and bool(payload.get(STATUS_ECHO_MARKER))


def _is_number(value) -> bool:
    # bool is an int subclass but never a channel value
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def coerce_duration(value) -> int:
    """
    Coerce a softChangeDuration field to an int number of milliseconds.

    Numeric strings are parsed ("1500" -> 1500, "1500.7" -> 1500), anything
    unparseable resolves to 0 (no transition).
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return int(float(text))
            except (ValueError, OverflowError):
                logger.debug(f"Ignoring non-numeric softChangeDuration {value!r}")
                return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


def _parse_color(color, device_type: DeviceType) -> Optional[dict]:
    if isinstance(color, str):
        try:
            return hex_to_color(color, device_type)
        except ValueError as e:
            logger.debug(f"Ignoring undecodable HEX color: {e}")
            return None
    if isinstance(color, dict):
        return default_state(color, device_type)
    return None


def normalize_intent(msg,
                     device_type: DeviceType,
                     soft_change_default: bool = False,
                     soft_change_duration_default: int = 0) -> Optional[FixtureAction]:
    """
    Classify an inbound host message into one FixtureAction.

    Accepted payload shapes:
    - number: SETVALUE (single channel), or SETSINGLECOLOR with the
      message topic as role (RGB/RGBW dashboard sliders, checkOn=True)
    - string: bare action name ("ON", "off", "SaveDefault", ...)
    - dict:   {action, value, color, colorId, colorValue, transition,
               softChange, softChangeDuration, checkOn}

    Malformed or unknown messages are not errors: they yield None. The
    caller's message is never modified.

    Args:
        msg: Host message dict with 'payload' and optional 'topic'
        device_type: Fixture variant
        soft_change_default: softOnOff config value, used when absent
        soft_change_duration_default: softOnOffDuration config value (ms)

    Returns:
        FixtureAction, or None if no action can be determined
    """
    if not isinstance(msg, dict):
        return None

    if is_status_echo(msg):
        logger.debug("Skipping status echo message")
        return None

    payload = msg.get("payload")
    topic = msg.get("topic")

    if _is_number(payload):
        if device_type == DeviceType.SINGLE:
            fields = {"action": "SETVALUE", "value": payload}
        elif topic:
            fields = {"action": "SETSINGLECOLOR", "colorId": topic,
                      "colorValue": payload, "checkOn": True}
        else:
            logger.debug(f"Ignoring bare number {payload!r} without topic")
            return None
    elif isinstance(payload, str):
        fields = {"action": payload}
    elif isinstance(payload, dict):
        fields = payload
    else:
        return None

    action_name = fields.get("action")
    if not isinstance(action_name, str):
        return None
    action_type = ActionType.__members__.get(action_name.strip().upper())
    if action_type is None or action_type not in SUPPORTED_ACTIONS[device_type]:
        logger.debug(f"Unsupported action {action_name!r} for {device_type.name}")
        return None

    soft_change = fields.get("softChange")
    if soft_change is None:
        soft_change = soft_change_default
    duration = fields.get("softChangeDuration")
    if duration is None:
        duration = soft_change_duration_default

    action = FixtureAction(
        action_type,
        soft_change=bool(soft_change),
        soft_change_duration=coerce_duration(duration),
        transition=fields.get("transition") or None,
        check_on=bool(fields.get("checkOn", False)),
    )

    if fields.get("color") is not None and device_type != DeviceType.SINGLE:
        action.color = _parse_color(fields["color"], device_type)

    if action_type == ActionType.SETVALUE:
        if not _is_number(fields.get("value")):
            logger.debug("SETVALUE without numeric value")
            return None
        action.value = fields["value"]

    elif action_type == ActionType.SETCOLOR:
        if action.color is None:
            logger.debug("SETCOLOR without color")
            return None

    elif action_type == ActionType.SETSINGLECOLOR:
        role = fields.get("colorId")
        value = fields.get("colorValue")
        if not isinstance(role, str) or not _is_number(value):
            logger.debug("SETSINGLECOLOR without colorId/colorValue")
            return None
        role = role.strip().lower()
        if role not in DEVICE_ROLES[device_type]:
            logger.debug(f"Unknown color role {role!r} for {device_type.name}")
            return None
        action.role = role
        action.value = value

    return action


# Payload Encoder

def encode_bus_payload(address,
                       state: dict,
                       device_type: DeviceType,
                       transition: str = DEFAULT_TRANSITION,
                       duration: int = 0) -> dict:
    """
    Encode a ColorState as an Art-Net node payload.

    Channels are numbered sequentially from the base address in role
    order. No DMX universe range check is done here, the bus node rejects
    or clamps out-of-range channels.

    Layout:
        {"buckets": [{"channel": address + i, "value": v_i}, ...],
         "transition": "linear", "duration": 500}   # only if duration > 0

    Args:
        address: Base DMX channel (int or numeric string)
        state: ColorState with every role of the variant present
        device_type: Fixture variant
        transition: Easing name for the bus node
        duration: Transition time in ms, 0 = apply immediately

    Returns:
        Payload dict
    """
    address = int(address)
    payload = {
        "buckets": [
            {"channel": address + i, "value": value}
            for i, value in enumerate(state_values(state, device_type))
        ]
    }

    if duration and duration > 0:
        payload["transition"] = transition
        payload["duration"] = duration

    return payload


def create_bus_message(address,
                       state: dict,
                       device_type: DeviceType,
                       transition: str = DEFAULT_TRANSITION,
                       duration: int = 0) -> dict:
    """Wrap encode_bus_payload() as a host message {'payload': ...}."""
    return {"payload": encode_bus_payload(address, state, device_type, transition, duration)}


def create_status_message(state: dict) -> dict:
    """
    Create a status echo message for the display output.

    The echo marker is always set so the message is dropped by
    normalize_intent() if the flow wires it back to the input.
    """
    return {"payload": copy_state(state), STATUS_ECHO_MARKER: True}


def default_record_key(identity: str) -> str:
    """Store key of the persisted power-on default for a fixture identity."""
    return identity + DEFAULT_RECORD_SUFFIX
