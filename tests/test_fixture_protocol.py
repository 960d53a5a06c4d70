#!/usr/bin/env python3
"""
Tests for the fixture state model, intent normalizer and payload encoder.
These run without an event loop or a store.
"""

import logging

import pytest

from artnet_fixture.artnet_fixture_protocol import *


def test_default_state_fills_missing_roles():
    """Missing and None roles become 0, other roles are kept"""
    state = default_state({"red": 10, "blue": None}, DeviceType.RGBW)
    print(f"  Defaulted: {state}")

    assert state == {"red": 10, "green": 0, "blue": 0, "white": 0}
    assert list(state) == ["red", "green", "blue", "white"], "Role order is channel order"


def test_default_state_is_idempotent():
    for device_type in DeviceType:
        for partial in ({}, {"red": 7}, {"value": 3, "white": 9}, None):
            once = default_state(partial, device_type)
            assert default_state(once, device_type) == once
            assert set(once) == set(get_roles(device_type))


def test_default_state_drops_foreign_roles():
    assert default_state({"red": 1, "white": 200}, DeviceType.RGB) == {"red": 1, "green": 0, "blue": 0}
    assert default_state({"red": 1}, DeviceType.SINGLE) == {"value": 0}


def test_default_state_returns_new_dict():
    source = {"red": 1, "green": 2, "blue": 3}
    result = default_state(source, DeviceType.RGB)
    result["red"] = 99
    assert source["red"] == 1


def test_off_state_shapes():
    assert make_off_state(DeviceType.SINGLE) == {"value": 0}
    assert make_off_state(DeviceType.RGB) == {"red": 0, "green": 0, "blue": 0}
    assert make_off_state(DeviceType.RGBW) == {"red": 0, "green": 0, "blue": 0, "white": 0}
    assert [get_channel_count(t) for t in DeviceType] == [1, 3, 4]


def test_parse_device_type():
    assert parse_device_type(0) == DeviceType.SINGLE
    assert parse_device_type("1") == DeviceType.RGB
    assert parse_device_type("rgbw") == DeviceType.RGBW
    assert parse_device_type(DeviceType.RGB) == DeviceType.RGB
    with pytest.raises(ValueError):
        parse_device_type("7")
    with pytest.raises(ValueError):
        parse_device_type("dimmer")


def test_encode_single_channel_payload():
    """Single channel fixture at address 10 with value 128"""
    payload = encode_bus_payload(10, {"value": 128}, DeviceType.SINGLE)
    print(f"  Payload: {payload}")

    assert payload == {"buckets": [{"channel": 10, "value": 128}]}


def test_encode_rgbw_payload():
    state = default_state({"red": 10, "green": 20, "blue": 30}, DeviceType.RGBW)
    payload = encode_bus_payload(1, state, DeviceType.RGBW)

    assert payload == {"buckets": [
        {"channel": 1, "value": 10},
        {"channel": 2, "value": 20},
        {"channel": 3, "value": 30},
        {"channel": 4, "value": 0},
    ]}


def test_encode_transition_only_with_duration():
    state = {"red": 1, "green": 2, "blue": 3}

    instant = encode_bus_payload(5, state, DeviceType.RGB, "linear", 0)
    assert "transition" not in instant and "duration" not in instant

    fade = encode_bus_payload(5, state, DeviceType.RGB, "ease-in", 750)
    assert fade["transition"] == "ease-in"
    assert fade["duration"] == 750
    assert [b["channel"] for b in fade["buckets"]] == [5, 6, 7]


def test_encode_string_address_and_no_range_check():
    """Address is parsed like a config string; no DMX universe check"""
    payload = encode_bus_payload("511", {"red": 1, "green": 2, "blue": 3}, DeviceType.RGB)
    assert [b["channel"] for b in payload["buckets"]] == [511, 512, 513]


def test_out_of_range_values_pass_through():
    """Intensities outside 0-255 are not clamped (bus node decides)"""
    state = default_state({"red": 300, "green": -5}, DeviceType.RGB)
    payload = encode_bus_payload(1, state, DeviceType.RGB)
    assert [b["value"] for b in payload["buckets"]] == [300, -5, 0]


def test_create_messages():
    msg = create_bus_message(1, {"value": 3}, DeviceType.SINGLE)
    assert msg == {"payload": {"buckets": [{"channel": 1, "value": 3}]}}

    state = {"value": 3}
    status = create_status_message(state)
    assert status == {"payload": {"value": 3}, "isGUIUpdate": True}
    status["payload"]["value"] = 4
    assert state["value"] == 3, "Status payload must be a copy"

    assert default_record_key("hall_n1") == "hall_n1_default"


def test_hex_color_conversion():
    color = hex_to_color("#0a141e", DeviceType.RGBW)
    assert color == {"red": 10, "green": 20, "blue": 30, "white": 0}
    assert hex_to_color("FF000080", DeviceType.RGBW)["white"] == 128
    assert hex_to_color("#ff000080", DeviceType.RGB) == {"red": 255, "green": 0, "blue": 0}

    assert color_to_hex({"red": 255, "green": 16, "blue": 1, "white": 0}, DeviceType.RGBW) == "#ff100100"
    assert color_to_hex({"red": 255}, DeviceType.RGB) == "#ff0000"

    with pytest.raises(ValueError):
        hex_to_color("#12345", DeviceType.RGB)
    with pytest.raises(ValueError):
        hex_to_color("#gg0000", DeviceType.RGB)
    with pytest.raises(ValueError):
        hex_to_color("#ffffff", DeviceType.SINGLE)


def test_coerce_duration():
    assert coerce_duration(500) == 500
    assert coerce_duration("1500") == 1500
    assert coerce_duration(" 1500.7 ") == 1500
    assert coerce_duration("slow") == 0
    assert coerce_duration(None) == 0
    assert coerce_duration("inf") == 0
    assert coerce_duration("1e400") == 0
    assert coerce_duration(float("inf")) == 0


# Intent Normalizer

def test_bare_number_single_channel():
    action = normalize_intent({"payload": 42}, DeviceType.SINGLE)
    assert action.action_type == ActionType.SETVALUE
    assert action.value == 42
    assert action.duration == 0


def test_bare_number_with_topic_is_slider_update():
    action = normalize_intent({"payload": 5, "topic": "RED"}, DeviceType.RGBW)
    assert action.action_type == ActionType.SETSINGLECOLOR
    assert action.role == "red"
    assert action.value == 5
    assert action.check_on is True


def test_bare_number_without_topic_on_color_fixture():
    assert normalize_intent({"payload": 5}, DeviceType.RGB) is None


def test_bool_payload_is_not_a_number():
    assert normalize_intent({"payload": True}, DeviceType.SINGLE) is None


def test_bare_string_is_action_name():
    action = normalize_intent({"payload": "on"}, DeviceType.RGB)
    assert action.action_type == ActionType.ON
    assert action.color is None
    assert action.easing == "linear"


def test_object_action_is_case_insensitive():
    action = normalize_intent({"payload": {"action": "SetColor", "color": {"green": 9}}}, DeviceType.RGB)
    assert action.action_type == ActionType.SETCOLOR
    assert action.color == {"red": 0, "green": 9, "blue": 0}


def test_infinite_duration_means_no_transition():
    action = normalize_intent({"payload": {"action": "ON", "softChange": True,
                                           "softChangeDuration": "inf"}}, DeviceType.RGB)
    assert action.action_type == ActionType.ON
    assert action.duration == 0

def test_hex_color_in_message():
    action = normalize_intent({"payload": {"action": "SETCOLOR", "color": "#102030"}}, DeviceType.RGBW)
    assert action.color == {"red": 16, "green": 32, "blue": 48, "white": 0}

    assert normalize_intent({"payload": {"action": "SETCOLOR", "color": "#xyz"}}, DeviceType.RGBW) is None


def test_undecodable_hex_color_is_not_an_error(caplog):
    caplog.set_level(logging.DEBUG)

    assert normalize_intent({"payload": {"action": "SETCOLOR", "color": "#xyz"}}, DeviceType.RGB) is None
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

def test_unknown_and_unsupported_actions_are_skipped():
    assert normalize_intent({"payload": "DANCE"}, DeviceType.RGBW) is None
    assert normalize_intent({"payload": {"value": 3}}, DeviceType.SINGLE) is None
    assert normalize_intent({"payload": "SETCOLOR"}, DeviceType.SINGLE) is None
    assert normalize_intent({"payload": {"action": "SETVALUE", "value": 3}}, DeviceType.RGB) is None
    assert normalize_intent({"payload": None}, DeviceType.RGB) is None
    assert normalize_intent(None, DeviceType.RGB) is None


def test_missing_required_fields_are_skipped():
    assert normalize_intent({"payload": "SETVALUE"}, DeviceType.SINGLE) is None
    assert normalize_intent({"payload": "SETCOLOR"}, DeviceType.RGB) is None
    assert normalize_intent({"payload": {"action": "SETSINGLECOLOR", "colorId": "red"}}, DeviceType.RGB) is None
    assert normalize_intent({"payload": {"action": "SETSINGLECOLOR", "colorValue": 3}}, DeviceType.RGB) is None


def test_unknown_role_is_skipped():
    assert normalize_intent({"payload": 5, "topic": "WHITE"}, DeviceType.RGB) is None
    assert normalize_intent({"payload": 5, "topic": "amber"}, DeviceType.RGBW) is None
    assert normalize_intent({"payload": 5, "topic": "WHITE"}, DeviceType.RGBW).role == "white"


def test_status_echo_is_never_an_action():
    assert normalize_intent({"payload": "ON", "isGUIUpdate": True}, DeviceType.RGB) is None
    echo = create_status_message({"red": 1, "green": 2, "blue": 3})
    assert normalize_intent(echo, DeviceType.RGB) is None
    assert normalize_intent({"payload": {"action": "ON", "isGUIUpdate": True}}, DeviceType.RGB) is None


def test_soft_change_defaults_from_config():
    action = normalize_intent({"payload": "ON"}, DeviceType.RGB, True, 800)
    assert action.soft_change is True
    assert action.duration == 800

    action = normalize_intent({"payload": {"action": "ON", "softChange": False}}, DeviceType.RGB, True, 800)
    assert action.duration == 0, "Explicit softChange=False wins over config"

    action = normalize_intent({"payload": {"action": "OFF", "softChange": True,
                                           "softChangeDuration": "1200",
                                           "transition": "quadratic"}}, DeviceType.RGB)
    assert action.duration == 1200
    assert action.easing == "quadratic"


def test_duration_without_soft_change_is_zero():
    action = normalize_intent({"payload": {"action": "OFF", "softChangeDuration": 900}}, DeviceType.RGB)
    assert action.soft_change is False
    assert action.duration == 0


def test_normalize_does_not_modify_message():
    msg = {"payload": {"action": "SETCOLOR", "color": {"red": 3}}}
    normalize_intent(msg, DeviceType.RGBW, True, 100)
    assert msg == {"payload": {"action": "SETCOLOR", "color": {"red": 3}}}


def test_single_channel_ignores_color_field():
    action = normalize_intent({"payload": {"action": "ON", "color": {"red": 3}}}, DeviceType.SINGLE)
    assert action.action_type == ActionType.ON
    assert action.color is None


if __name__ == "__main__":
    import sys
    sys.exit(pytest.main([__file__, "-v"]))
