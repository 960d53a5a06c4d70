"""
Art-Net Fixture Interface - Per-Fixture State Machine
=====================================================

This module provides the stateful half of the fixture core. One
ArtnetFixtureController drives one fixture (single dimmer, RGB or RGBW):

- Applies FixtureActions against the fixture's current/default ColorState
- Emits Art-Net bucket payloads to the bus output callbacks
- Persists the power-on default state (SAVEDEFAULT) in a FixtureStateStore
- Echoes the current state to the status (GUI) output callbacks, debounced
  through a single-shot QTimer

Scheduling:
    Everything runs on the Qt event loop thread. One inbound message is
    processed completely before the next one; the only deferred work is the
    status echo timer, which fires between messages.

Dependencies:
    pip install PyQt5
"""

import logging
from typing import Optional, Callable

from PyQt5.QtCore import QTimer

from artnet_fixture.artnet_fixture_protocol import *
from artnet_fixture.artnet_fixture_store import FixtureStateStore, FixtureStoreError


logger = logging.getLogger(__name__)

# QTimer intervals are a signed 32-bit int of milliseconds
MAX_TIMER_INTERVAL_MS = 2147483647


class StatusEchoScheduler:
    """
    Debounced status echo with exactly one pending slot.

    With delay_ms == 0 every request is emitted immediately. Otherwise each
    request stops the pending timer (if any) and restarts it, so a burst of
    requests produces a single emit after the last one. The emit callback
    reads the fixture state when the timer fires, so the freshest state wins.

    Usage:
        scheduler = StatusEchoScheduler(delay_ms=50, emit_callback=send_status)
        scheduler.request()          # arms the timer
        scheduler.request()          # re-arms it, only one emit happens
    """

    def __init__(self, delay_ms: int = 0, emit_callback: Optional[Callable[[], None]] = None):
        """
        Args:
            delay_ms: Configured echo delay in milliseconds (0 = synchronous)
            emit_callback: Called without arguments to send the echo
        """
        self.delay_ms = max(0, int(delay_ms))
        self.emit_callback = emit_callback
        self.timer = QTimer()
        self.timer.setSingleShot(True)
        self.timer.timeout.connect(self._on_timeout)
        self.logger = logging.getLogger(f"{__name__}.StatusEchoScheduler")

    @property
    def is_pending(self) -> bool:
        return self.timer.isActive()

    def request(self, extra_delay_ms: int = 0):
        """
        Request a status echo.

        Args:
            extra_delay_ms: Added to the configured delay, used to hold the
                            echo back until a soft transition has finished
        """
        if self.delay_ms == 0:
            self.logger.debug("Sending status echo immediately")
            self._emit()
            return

        if self.timer.isActive():
            self.logger.debug("Replacing pending status echo")
            self.timer.stop()

        delay = min(self.delay_ms + max(0, int(extra_delay_ms)), MAX_TIMER_INTERVAL_MS)
        self.logger.debug(f"Starting echo timer for {delay}ms")
        self.timer.start(delay)

    def flush(self):
        """Immediately send a pending echo and stop the timer"""
        if self.timer.isActive():
            self.timer.stop()
            self._emit()

    def cancel(self):
        """Drop a pending echo without sending it"""
        if self.timer.isActive():
            self.logger.debug("Cancelled pending status echo")
            self.timer.stop()

    def _on_timeout(self):
        """Internal method called when timer expires"""
        self.logger.debug(f"Echo timer expired (delay was {self.delay_ms}ms)")
        self._emit()

    def _emit(self):
        if self.emit_callback is None:
            return
        try:
            self.emit_callback()
        except Exception as e:
            self.logger.error(f"Status echo error: {e}", exc_info=True)


class ArtnetFixtureController:
    """
    State machine for one Art-Net fixture.

    The controller owns the fixture's runtime record (current state, default
    state, on/off flag and the pending echo timer). Outputs are delivered to
    registered callbacks:

    - output callbacks: bus messages {'payload': {'buckets': [...], ...}}
    - status callbacks: echo messages {'payload': <state>, 'isGUIUpdate': True}
    - error callbacks:  diagnostic strings (store failures, dispatch errors)

    Examples:
        fixture = ArtnetFixtureController(name="stage", node_id="n1", address=1,
                                          device_type=DeviceType.RGBW,
                                          store=FixtureStateStore("/tmp/artnet"))
        fixture.add_output_callback(artnet_node.send)
        fixture.handle_message({"payload": {"action": "SETCOLOR",
                                            "color": {"red": 255}}})
        fixture.handle_message({"payload": "SAVEDEFAULT"})
        fixture.handle_message({"payload": "OFF"})
    """

    def __init__(self,
                 name: str = "",
                 node_id: str = "",
                 address: int = 1,
                 device_type=DeviceType.RGBW,
                 soft_on_off: bool = False,
                 soft_on_off_duration: int = 0,
                 gui_delay: int = 0,
                 store: Optional[FixtureStateStore] = None,
                 error_callback: Optional[Callable] = None):
        """
        Initialize the fixture and load its persisted default state.

        Args:
            name: Configured fixture name (part of the persistence key)
            node_id: Instance id (part of the persistence key)
            address: Base DMX channel of the fixture
            device_type: DeviceType, or anything parse_device_type() accepts
            soft_on_off: Default for messages without softChange
            soft_on_off_duration: Default soft change duration in ms
            gui_delay: Status echo delay in ms (0 = echo synchronously)
            store: Persistent store, defaults to FixtureStateStore()
            error_callback: Optional diagnostics callback, also notified of
                            failures while loading the default state

        Raises:
            ValueError: if address or device_type is invalid
        """
        self.name = name
        self.node_id = node_id
        self.address = int(address)
        self.device_type = parse_device_type(device_type)
        self.soft_on_off = bool(soft_on_off)
        self.soft_on_off_duration = coerce_duration(soft_on_off_duration)
        self.store = store if store is not None else FixtureStateStore()
        self._identity = f"{name}_{node_id}"

        # Runtime state
        self.is_on: bool = False  # Gates SETSINGLECOLOR output when checkOn is set
        self.current_state: dict = make_off_state(self.device_type)
        self.default_state: dict = make_off_state(self.device_type)

        self.output_callbacks: list = []
        self.status_callbacks: list = []
        self.error_callbacks: list = []
        if error_callback is not None:
            # Registered before the default is loaded so load failures reach it
            self.error_callbacks.append(error_callback)

        self.echo_scheduler = StatusEchoScheduler(gui_delay, self._send_status_output)

        self.load_default_state()

    @classmethod
    def from_config(cls, config: dict, store: Optional[FixtureStateStore] = None,
                    error_callback: Optional[Callable] = None) -> 'ArtnetFixtureController':
        """
        Create a controller from a node configuration dict.

        Recognized keys: name, id, address, deviceType, softOnOff,
        softOnOffDuration, guiDelay.
        """
        return cls(
            name=config.get("name", ""),
            node_id=config.get("id", ""),
            address=config.get("address", 1),
            device_type=config.get("deviceType", DeviceType.RGBW),
            soft_on_off=config.get("softOnOff", False),
            soft_on_off_duration=config.get("softOnOffDuration", 0),
            gui_delay=coerce_duration(config.get("guiDelay", 0)),
            store=store,
            error_callback=error_callback,
        )

    @property
    def identity(self) -> str:
        """Persistence key of this fixture (name + instance id)"""
        return self._identity

    @property
    def channel_count(self) -> int:
        return get_channel_count(self.device_type)

    # Callback management

    def add_output_callback(self, callback: Callable):
        """
        Add a callback for bus output.

        Args:
            callback: Function that takes the bus message dict
        """
        if callback not in self.output_callbacks:
            self.output_callbacks.append(callback)

    def remove_output_callback(self, callback: Callable):
        if callback in self.output_callbacks:
            self.output_callbacks.remove(callback)

    def add_status_callback(self, callback: Callable):
        """
        Add a callback for status echo output.

        Args:
            callback: Function that takes the status message dict
        """
        if callback not in self.status_callbacks:
            self.status_callbacks.append(callback)

    def remove_status_callback(self, callback: Callable):
        if callback in self.status_callbacks:
            self.status_callbacks.remove(callback)

    def add_error_callback(self, callback: Callable):
        """
        Add a callback for diagnostics.

        Args:
            callback: Function that takes an error description string
        """
        if callback not in self.error_callbacks:
            self.error_callbacks.append(callback)

    def remove_error_callback(self, callback: Callable):
        if callback in self.error_callbacks:
            self.error_callbacks.remove(callback)

    # Persistence

    def load_default_state(self):
        """
        Load the power-on default from the store.

        A missing, unreadable or invalid record leaves the fixture with the
        all-off default; it is never fatal.
        """
        key = default_record_key(self.identity)
        try:
            record = self.store.load(key)
        except FixtureStoreError as e:
            self._report_error(f"[{self.identity}] {e}")
            record = None

        if record is not None and not isinstance(record, dict):
            self._report_error(f"[{self.identity}] Ignoring invalid default record: {record!r}")
            record = None

        if record is None:
            self.default_state = make_off_state(self.device_type)
        else:
            # Records written by the older device node nest the color
            if isinstance(record.get("color"), dict):
                record = record["color"]
            self.default_state = default_state(record, self.device_type)

        logger.info(f"[{self.identity}] Default state: {self.default_state}")

    def save_default_state(self) -> bool:
        """
        Persist a copy of the current state as the power-on default.

        Returns:
            True if saved. On failure the in-memory default is unchanged.
        """
        snapshot = copy_state(self.current_state)
        try:
            self.store.save(default_record_key(self.identity), snapshot)
        except FixtureStoreError as e:
            self._report_error(f"[{self.identity}] {e}")
            return False

        self.default_state = snapshot
        logger.info(f"[{self.identity}] Saved default state: {snapshot}")
        return True

    # Message handling

    def handle_message(self, msg) -> Optional[dict]:
        """
        Process one inbound host message.

        Runs normalize -> dispatch -> encode -> emit. Unknown or malformed
        messages and status echoes are skipped silently. Unexpected errors
        are logged and reported to the error callbacks; the message then
        produces no output.

        Args:
            msg: Host message dict {'payload': ..., 'topic'?: str}

        Returns:
            The bus message sent for this input, or None
        """
        if not msg:
            return None

        try:
            return self._handle_message_impl(msg)
        except Exception as e:
            self._report_error(f"[{self.identity}] Exception in handle_message: {e}", exc_info=True)
            return None

    def _handle_message_impl(self, msg) -> Optional[dict]:
        action = normalize_intent(msg, self.device_type,
                                  self.soft_on_off, self.soft_on_off_duration)
        if action is None:
            logger.debug(f"[{self.identity}] No action for message {msg!r}")
            return None
        return self.dispatch(action)

    def dispatch(self, action: FixtureAction) -> Optional[dict]:
        """
        Apply one action to the fixture state.

        Args:
            action: Canonical action (see normalize_intent)

        Returns:
            The bus message sent, or None if the action produced no output
        """
        action_type = action.action_type
        if action_type not in SUPPORTED_ACTIONS[self.device_type]:
            logger.debug(f"[{self.identity}] {action_type.name} not supported by {self.device_type.name}")
            return None

        if action_type == ActionType.SAVEDEFAULT:
            self.save_default_state()
            return None

        send_output = True

        if action_type == ActionType.ON:
            self.is_on = True
            # Explicit power-on color is an RGB/RGBW feature only
            if action.color is not None and self.device_type != DeviceType.SINGLE:
                self.current_state = default_state(action.color, self.device_type)
            else:
                self.current_state = copy_state(self.default_state)

        elif action_type == ActionType.OFF:
            self.is_on = False
            self.current_state = make_off_state(self.device_type)

        elif action_type == ActionType.SETVALUE:
            self.current_state["value"] = action.value

        elif action_type == ActionType.SETCOLOR:
            self.current_state = default_state(action.color, self.device_type)

        elif action_type == ActionType.SETSINGLECOLOR:
            self.current_state[action.role] = action.value
            self.current_state = default_state(self.current_state, self.device_type)
            send_output = not action.check_on or self.is_on
            if not send_output:
                logger.debug(f"[{self.identity}] Fixture is off, {action.role}={action.value} kept without output")

        logger.info(f"[{self.identity}] {action_type.name}: {self.current_state} "
                    f"(on={self.is_on}, duration={action.duration})")

        output = self._send_bus_output(action) if send_output else None
        self.echo_scheduler.request(action.duration)
        return output

    # Convenience methods

    def _make_action(self, action_type: ActionType, **kwargs) -> FixtureAction:
        kwargs.setdefault("soft_change", self.soft_on_off)
        kwargs.setdefault("soft_change_duration", self.soft_on_off_duration)
        return FixtureAction(action_type, **kwargs)

    def turn_on(self, color: Optional[dict] = None, **kwargs) -> Optional[dict]:
        """Turn on with the stored default, or an explicit color (RGB/RGBW)"""
        if color is not None:
            color = default_state(color, self.device_type)
        return self.dispatch(self._make_action(ActionType.ON, color=color, **kwargs))

    def turn_off(self, **kwargs) -> Optional[dict]:
        return self.dispatch(self._make_action(ActionType.OFF, **kwargs))

    def set_value(self, value, **kwargs) -> Optional[dict]:
        """Set the dimmer value of a single channel fixture"""
        return self.dispatch(self._make_action(ActionType.SETVALUE, value=value, **kwargs))

    def set_color(self, color: dict, **kwargs) -> Optional[dict]:
        return self.dispatch(self._make_action(
            ActionType.SETCOLOR, color=default_state(color, self.device_type), **kwargs))

    def set_single_channel(self, role: str, value, check_on: bool = False, **kwargs) -> Optional[dict]:
        """
        Set one color role.

        Args:
            role: 'red', 'green', 'blue' or 'white' (case-insensitive)
            value: Intensity
            check_on: Only send bus output while the fixture is on

        Raises:
            ValueError: if the role is not a role of this fixture
        """
        role = role.lower()
        if role not in get_roles(self.device_type):
            raise ValueError(f"Unknown role {role!r} for {self.device_type.name}")
        return self.dispatch(self._make_action(
            ActionType.SETSINGLECOLOR, role=role, value=value, check_on=check_on, **kwargs))

    def save_default(self) -> bool:
        return self.save_default_state()

    def flush_status(self):
        """Send a pending status echo now instead of waiting for the timer"""
        self.echo_scheduler.flush()

    def close(self):
        """Drop any pending status echo"""
        self.echo_scheduler.cancel()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Output

    def _send_bus_output(self, action: FixtureAction) -> dict:
        msg = create_bus_message(self.address, self.current_state, self.device_type,
                                 action.easing, action.duration)
        logger.debug(f"[{self.identity}] Bus output: {msg['payload']}")

        for callback in self.output_callbacks:
            try:
                callback(msg)
            except Exception as e:
                logger.warning(f"Output callback error: {e}")
        return msg

    def _send_status_output(self):
        for callback in self.status_callbacks:
            # Each consumer gets its own copy of the state
            msg = create_status_message(self.current_state)
            try:
                callback(msg)
            except Exception as e:
                logger.warning(f"Status callback error: {e}")

    def _report_error(self, message: str, exc_info: bool = False):
        logger.error(message, exc_info=exc_info)
        for callback in self.error_callbacks:
            try:
                callback(message)
            except Exception as e:
                logger.warning(f"Error callback error: {e}")
