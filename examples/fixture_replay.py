#!/usr/bin/env python3
"""
Art-Net Fixture Replay
======================

Feeds JSON-lines inbound messages through one fixture controller and prints
what the fixture would send to the Art-Net node and to the status display.

Each input line is one JSON value. An object with a "payload" key is used
as the whole message (so "topic" and "isGUIUpdate" can be given), anything
else becomes the payload:

    "ON"
    {"action": "SETCOLOR", "color": {"red": 10, "green": 20, "blue": 30}}
    {"payload": 5, "topic": "RED"}

Usage:
    python examples/fixture_replay.py --device-type rgbw --address 1 messages.jsonl
    echo '"ON"' | python examples/fixture_replay.py --device-type single --address 10
"""

import sys
import json
import argparse
import logging

from PyQt5.QtCore import QCoreApplication

from artnet_fixture.artnet_fixture_interface import ArtnetFixtureController
from artnet_fixture.artnet_fixture_store import FixtureStateStore, DEFAULT_STORE_DIR


logger = logging.getLogger(__name__)


def setup_logging(level=logging.INFO):
    """
    Setup logging for the replay tool.

    Usage:
        setup_logging(logging.DEBUG)  # Per-message details
        setup_logging(logging.INFO)   # State changes and persistence (default)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S',
        stream=sys.stderr
    )
    logging.getLogger('artnet_fixture').setLevel(level)


def parse_message_line(line: str):
    """
    Parse one input line into a host message.

    Returns:
        Message dict, or None for blank lines

    Raises:
        ValueError: if the line is not valid JSON
    """
    line = line.strip()
    if not line:
        return None
    value = json.loads(line)
    if isinstance(value, dict) and "payload" in value:
        return value
    return {"payload": value}


def replay_messages(controller: ArtnetFixtureController, lines, app=None) -> int:
    """
    Send every message in lines to the controller.

    Args:
        controller: Fixture to drive
        lines: Iterable of JSON text lines
        app: Optional QCoreApplication, events are processed between messages

    Returns:
        Number of messages handed to the controller
    """
    count = 0
    for line_no, line in enumerate(lines, start=1):
        try:
            msg = parse_message_line(line)
        except ValueError as e:
            logger.error(f"Line {line_no}: invalid JSON ({e})")
            continue
        if msg is None:
            continue

        controller.handle_message(msg)
        count += 1
        if app is not None:
            app.processEvents()

    controller.flush_status()
    return count


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Replay inbound messages through an Art-Net fixture')
    parser.add_argument('input', nargs='?', default='-',
                       help='JSON-lines message file (default: stdin)')
    parser.add_argument('--name', default='fixture',
                       help='Fixture name (default: fixture)')
    parser.add_argument('--id', dest='node_id', default='replay',
                       help='Fixture instance id (default: replay)')
    parser.add_argument('--address', type=int, default=1,
                       help='Base DMX channel (default: 1)')
    parser.add_argument('--device-type', default='rgbw',
                       help='single, rgb, rgbw or 0-2 (default: rgbw)')
    parser.add_argument('--soft-on-off', action='store_true',
                       help='Use soft transitions by default')
    parser.add_argument('--soft-duration', type=int, default=0,
                       help='Default soft transition duration in ms (default: 0)')
    parser.add_argument('--gui-delay', type=int, default=0,
                       help='Status echo delay in ms (default: 0)')
    parser.add_argument('--store-dir', default=str(DEFAULT_STORE_DIR),
                       help=f'Default state directory (default: {DEFAULT_STORE_DIR})')
    parser.add_argument('--debug', action='store_true',
                       help='Enable debug logging')

    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])

    try:
        controller = ArtnetFixtureController(
            name=args.name,
            node_id=args.node_id,
            address=args.address,
            device_type=args.device_type,
            soft_on_off=args.soft_on_off,
            soft_on_off_duration=args.soft_duration,
            gui_delay=args.gui_delay,
            store=FixtureStateStore(args.store_dir),
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    controller.add_output_callback(lambda msg: print(f"bus {json.dumps(msg['payload'])}"))
    controller.add_status_callback(lambda msg: print(f"status {json.dumps(msg['payload'])}"))

    with controller:
        if args.input == '-':
            count = replay_messages(controller, sys.stdin, app)
        else:
            with open(args.input, encoding='utf-8') as f:
                count = replay_messages(controller, f, app)

    logger.info(f"Replayed {count} messages")
    return 0


if __name__ == "__main__":
    sys.exit(main())
