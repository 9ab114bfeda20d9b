"""Tests for event records, descriptors and the field escaping codec."""

import pytest

from acesync.errors import FormatError
from acesync.log import AuditEventType, AuditKey, Descriptor, LogEvent, LowestID, codec
from acesync.ranges import SortedRangeSet


class TestCodec:
    """Tests for the escape codec."""

    def test_plain_text_unchanged(self):
        assert codec.encode("hello world") == "hello world"
        assert codec.decode("hello world") == "hello world"

    def test_special_characters(self):
        assert codec.encode("a,b") == "a$kb"
        assert codec.encode("cost $5") == "cost $$5"
        assert codec.encode("line1\nline2\r") == "line1$nline2$r"

    def test_encoded_text_has_no_separators(self):
        encoded = codec.encode("x,\n\r$y")

        assert "," not in encoded
        assert "\n" not in encoded
        assert "\r" not in encoded

    @pytest.mark.parametrize("text", ["", "$", "$$", ",,,", "a$kb", "\r\n", "$n"])
    def test_decode_reverses_encode(self, text):
        assert codec.decode(codec.encode(text)) == text

    def test_unknown_escape(self):
        with pytest.raises(FormatError):
            codec.decode("a$xb")

    def test_trailing_escape(self):
        with pytest.raises(FormatError):
            codec.decode("abc$")


class TestLogEvent:
    """Tests for the single-line event format."""

    def test_to_representation(self):
        event = LogEvent(
            log_id="target-1",
            event_id=3,
            timestamp=1700000000000,
            type=AuditEventType.DEPLOYMENTADMIN_COMPLETE,
            properties={AuditKey.NAME: "bundle", AuditKey.MSG: "a,b"},
        )

        assert event.to_representation() == "target-1,3,1700000000000,2003,name,bundle,msg,a$kb"

    def test_parse(self):
        event = LogEvent.from_representation("t$k1,7,42,1001,msg,hi$nthere")

        assert event.log_id == "t,1"
        assert event.event_id == 7
        assert event.timestamp == 42
        assert event.type == AuditEventType.FRAMEWORK_INFO
        assert event.properties == {"msg": "hi\nthere"}

    def test_parse_preserves_property_order(self):
        event = LogEvent.from_representation("t,1,0,0,z,1,a,2,m,3")

        assert list(event.properties) == ["z", "a", "m"]
        assert event.to_representation() == "t,1,0,0,z,1,a,2,m,3"

    def test_parse_without_properties(self):
        event = LogEvent.from_representation("t,1,5,4001")

        assert event.properties == {}

    def test_negative_type_accepted(self):
        assert LogEvent.from_representation("t,1,5,-2").type == -2

    @pytest.mark.parametrize(
        "line",
        [
            "t,1,5",
            "t,1,5,0,key",
            "t,x,5,0",
            "t,1,-5,0",
            "t,1,5,type",
            "t,1,5,0,bad$q,v",
            "t,\u00b2,5,0",
            "t,1,5,\u0663",
        ],
    )
    def test_malformed_lines(self, line):
        with pytest.raises(FormatError):
            LogEvent.from_representation(line)

    def test_to_dict(self):
        event = LogEvent("t", 1, 10, 3, {"k": "v"})

        assert event.to_dict() == {
            "log_id": "t",
            "event_id": 1,
            "timestamp": 10,
            "type": 3,
            "properties": {"k": "v"},
        }


class TestDescriptor:
    """Tests for log descriptors."""

    def test_representation(self):
        descriptor = Descriptor("t,1", SortedRangeSet("1-3,5"))

        assert descriptor.to_representation() == "t$k1,1-3,5"

    def test_parse_range_with_commas(self):
        descriptor = Descriptor.from_representation("target,1-3,5,9")

        assert descriptor.log_id == "target"
        assert str(descriptor.range_set) == "1-3,5,9"

    def test_parse_empty_range(self):
        descriptor = Descriptor.from_representation("target,")

        assert descriptor.range_set.is_empty

    @pytest.mark.parametrize("line", ["target", ",1-3", "target,3-1"])
    def test_malformed(self, line):
        with pytest.raises(FormatError):
            Descriptor.from_representation(line)


class TestLowestID:
    """Tests for lowest ID lines."""

    def test_representation(self):
        assert LowestID("t", 12).to_representation() == "t,12"
        assert LowestID.from_representation("t$$,12") == LowestID("t$", 12)

    @pytest.mark.parametrize("line", ["t", "t,", "t,abc", "t,-1", "t,\u00b2"])
    def test_malformed(self, line):
        with pytest.raises(FormatError):
            LowestID.from_representation(line)


class TestAuditEventType:
    """Tests for event type numbering."""

    def test_groups(self):
        assert AuditEventType.BUNDLE_INSTALLED == 1
        assert AuditEventType.FRAMEWORK_STARTED == 1005
        assert AuditEventType.DEPLOYMENTADMIN_INSTALL == 2001
        assert AuditEventType.DEPLOYMENTCONTROL_INSTALL == 3001
        assert AuditEventType.TARGETPROPERTIES_SET == 4001
