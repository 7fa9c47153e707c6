"""Sphero BLE protocol implementation."""

from .chunking import MAX_BUFFER_SIZE, ResponseReassembler
from .commands import (
    V1_COMMANDS,
    V2_COMMANDS,
    Command,
    CommandCatalog,
    CommandDescriptor,
    CommandEncoder,
    build_boost_payload,
    build_configure_collision_detection_payload,
    build_configure_locator_payload,
    build_drive_payload,
    build_play_animation_payload,
    build_roll_payload,
    build_set_back_led_payload,
    build_set_data_streaming_payload,
    build_set_heading_payload,
    build_set_inactive_timeout_payload,
    build_set_led_payload,
    build_set_non_persistent_option_flags_payload,
    build_set_option_flags_payload,
    build_set_power_notify_payload,
    build_set_rgb_led_payload,
    build_set_rotation_rate_payload,
    build_set_stabilization_payload,
    build_set_stance_payload,
    build_sleep_payload,
)
from .framing import Frame, PacketCodec, ResponseFrame, checksum, escape, unescape
from .responses import DecoderEntry, DecoderRegistry, ResponseDispatcher
from .variants import V1, V2, VARIANTS, HandshakeStep, ProtocolVariant, select_variant

__all__ = [
    "Frame",
    "ResponseFrame",
    "PacketCodec",
    "checksum",
    "escape",
    "unescape",
    "ResponseReassembler",
    "MAX_BUFFER_SIZE",
    "Command",
    "CommandCatalog",
    "CommandDescriptor",
    "CommandEncoder",
    "V1_COMMANDS",
    "V2_COMMANDS",
    "build_boost_payload",
    "build_configure_collision_detection_payload",
    "build_configure_locator_payload",
    "build_drive_payload",
    "build_play_animation_payload",
    "build_roll_payload",
    "build_set_back_led_payload",
    "build_set_data_streaming_payload",
    "build_set_heading_payload",
    "build_set_inactive_timeout_payload",
    "build_set_led_payload",
    "build_set_non_persistent_option_flags_payload",
    "build_set_option_flags_payload",
    "build_set_power_notify_payload",
    "build_set_rgb_led_payload",
    "build_set_rotation_rate_payload",
    "build_set_stabilization_payload",
    "build_set_stance_payload",
    "build_sleep_payload",
    "DecoderEntry",
    "DecoderRegistry",
    "ResponseDispatcher",
    "HandshakeStep",
    "ProtocolVariant",
    "V1",
    "V2",
    "VARIANTS",
    "select_variant",
]
