import json
import unittest

from draftline import identifiers
from draftline.packets import (
    DiscardDraft,
    Edit,
    EndDraft,
    NewDraft,
    NewMessage,
    ProtocolViolation,
    StartDraft,
    UnknownDestination,
    UserDestination,
    WebPacket,
    decode_frame,
    dump_packet,
    encode_frame,
    parse_packet,
)

WIRE_ID = list(range(16))
TEXT_ID = identifiers.encode(bytes(WIRE_ID))


class TestParsePacket(unittest.TestCase):
    def test_inbound_new_message(self):
        packet = parse_packet(
            {
                "content": {"NewMessage": {"uuid": WIRE_ID, "content": "hello"}},
                "destination": {"User": "alice"},
                "sender": "bob",
                "timestamp": 42,
            }
        )

        self.assertEqual(packet.content, NewMessage(id=TEXT_ID, content="hello"))
        self.assertEqual(packet.destination, UserDestination("alice"))
        self.assertEqual(packet.sender, "bob")
        self.assertEqual(packet.timestamp, 42)

    def test_local_start_draft_has_no_sender(self):
        packet = parse_packet({"content": {"StartDraft": None}, "destination": {"User": "bob"}})

        self.assertEqual(packet.content, StartDraft())
        self.assertIsNone(packet.sender)
        self.assertIsNone(packet.timestamp)

    def test_each_variant(self):
        cases = {
            "NewDraft": ({"uuid": WIRE_ID}, NewDraft(id=TEXT_ID)),
            "DiscardDraft": ({"uuid": WIRE_ID}, DiscardDraft(id=TEXT_ID)),
            "Edit": ({"uuid": WIRE_ID, "content": "x"}, Edit(id=TEXT_ID, content="x")),
            "EndDraft": ({"uuid": WIRE_ID, "content": "y"}, EndDraft(id=TEXT_ID, content="y")),
        }
        for name, (body, expected) in cases.items():
            with self.subTest(variant=name):
                packet = parse_packet({"content": {name: body}, "destination": {"User": "bob"}})
                self.assertEqual(packet.content, expected)

    def test_zero_variants_is_a_violation(self):
        for content in ({}, {"NewMessage": None, "Edit": None}):
            with self.subTest(content=content):
                with self.assertRaises(ProtocolViolation):
                    parse_packet({"content": content, "destination": {"User": "bob"}})

    def test_multiple_variants_is_a_violation(self):
        with self.assertRaises(ProtocolViolation):
            parse_packet(
                {
                    "content": {"StartDraft": None, "NewDraft": {"uuid": WIRE_ID}},
                    "destination": {"User": "bob"},
                }
            )

    def test_unknown_variant_is_a_violation(self):
        with self.assertRaises(ProtocolViolation):
            parse_packet({"content": {"SyncMessage": {"uuid": WIRE_ID}}, "destination": {"User": "bob"}})

    def test_missing_fields(self):
        frames = [
            {"destination": {"User": "bob"}},
            {"content": {"StartDraft": None}},
            {"content": {"Edit": {"uuid": WIRE_ID}}, "destination": {"User": "bob"}},
            {"content": {"Edit": {"content": "x"}}, "destination": {"User": "bob"}},
            {"content": {"Edit": {"uuid": WIRE_ID[:8], "content": "x"}}, "destination": {"User": "bob"}},
            {"content": {"StartDraft": None}, "destination": "bob"},
            {"content": {"StartDraft": None}, "destination": {"User": "bob"}, "timestamp": "soon"},
            {"content": {"StartDraft": None}, "destination": {"User": "bob"}, "timestamp": True},
            {"content": {"StartDraft": None}, "destination": {"User": "bob"}, "sender": 7},
            ["not", "an", "object"],
        ]
        for frame in frames:
            with self.subTest(frame=frame):
                with self.assertRaises(ProtocolViolation):
                    parse_packet(frame)

    def test_unknown_destination_is_not_fatal(self):
        packet = parse_packet({"content": {"StartDraft": None}, "destination": {"Group": [1, 2, 3]}})

        self.assertEqual(packet.destination, UnknownDestination("Group", [1, 2, 3]))


class TestFrames(unittest.TestCase):
    def test_dump_omits_absent_envelope_fields(self):
        packet = WebPacket(content=EndDraft(id=TEXT_ID, content="done"), destination=UserDestination("bob"))

        self.assertEqual(
            dump_packet(packet),
            {"content": {"EndDraft": {"uuid": WIRE_ID, "content": "done"}}, "destination": {"User": "bob"}},
        )

    def test_start_draft_serializes_as_null(self):
        packet = WebPacket(content=StartDraft(), destination=UserDestination("bob"))

        self.assertEqual(json.loads(encode_frame(packet))["content"], {"StartDraft": None})

    def test_stamped_frame_is_decoded_back(self):
        packet = WebPacket(content=Edit(id=TEXT_ID, content="hi"), destination=UserDestination("bob"))
        stamped = packet.stamped("alice", 99)

        self.assertEqual(decode_frame(encode_frame(stamped)), stamped)

    def test_malformed_json(self):
        with self.assertRaises(ProtocolViolation):
            decode_frame("{not json")


if __name__ == "__main__":
    unittest.main()
