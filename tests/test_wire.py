"""Tests for the candidate's table-driven wire codec."""

import pytest
from google.protobuf import descriptor_pb2

from protodiff.candidate import wire
from protodiff.candidate.wire import Arena, decode, encode, file_table, table_for
from protodiff.errors import CandidateError, DecodeError, EncodeError
from tests.documents import A_DOC, B_DOC, length_delimited, nested_messages, tag, varint


class TestMiniTable:
    def test_file_table_fields(self):
        table = file_table()
        assert table.full_name == "google.protobuf.FileDescriptorProto"
        assert table.by_name["name"].number == 1
        assert table.by_number[4].name == "message_type"
        assert table.by_number[4].repeated is True
        assert table.by_number[4].is_submessage is True

    def test_tables_are_cached(self):
        assert table_for(descriptor_pb2.FileDescriptorProto.DESCRIPTOR) is file_table()

    def test_sub_table(self):
        table = file_table()
        sub = table.sub_table(table.by_name["message_type"])
        assert sub.full_name == "google.protobuf.DescriptorProto"

    def test_sub_table_of_scalar_raises(self):
        table = file_table()
        with pytest.raises(CandidateError):
            table.sub_table(table.by_name["name"])

    def test_packable(self):
        table = file_table()
        assert table.by_name["public_dependency"].packable is True
        assert table.by_name["dependency"].packable is False


class TestDecode:
    def test_decode_simple_file(self, arena):
        msg = decode(A_DOC, file_table(), arena)
        assert msg.get("name") == b"a.proto"
        assert msg.get("package") == b"pkg"
        messages = msg.get("message_type")
        assert len(messages) == 1
        assert messages[0].get("name") == b"A"
        assert messages[0].get("field")[0].get("number") == 1

    def test_missing_fields(self, arena):
        msg = decode(b"", file_table(), arena)
        assert msg.has("name") is False
        assert msg.get("name") is None
        assert msg.get("dependency") == []

    def test_unknown_field_kept(self, arena):
        extra = tag(999, 0) + varint(7)
        msg = decode(A_DOC + extra, file_table(), arena)
        assert bytes(msg.unknown) == extra

    def test_wrong_wire_type_goes_to_unknown(self, arena):
        data = tag(1, 0) + varint(1)  # name as a varint
        msg = decode(data, file_table(), arena)
        assert msg.has("name") is False
        assert bytes(msg.unknown) == data

    def test_unpacked_repeated(self, arena):
        data = tag(10, 0) + varint(0) + tag(10, 0) + varint(1)
        msg = decode(data, file_table(), arena)
        assert msg.get("public_dependency") == [0, 1]

    def test_packed_repeated(self, arena):
        data = length_delimited(10, varint(0) + varint(1) + varint(2))
        msg = decode(data, file_table(), arena)
        assert msg.get("public_dependency") == [0, 1, 2]

    def test_negative_int32(self, arena):
        data = length_delimited(10, varint((1 << 64) - 1))
        msg = decode(data, file_table(), arena)
        assert msg.get("public_dependency") == [-1]

    def test_singular_submessages_merge(self, arena):
        first = length_delimited(8, length_delimited(1, b"com.example"))  # java_package
        second = length_delimited(8, length_delimited(8, b"Outer"))  # java_outer_classname
        msg = decode(first + second, file_table(), arena)
        options = msg.get("options")
        assert options.get("java_package") == b"com.example"
        assert options.get("java_outer_classname") == b"Outer"

    def test_later_scalar_wins(self, arena):
        data = length_delimited(2, b"first") + length_delimited(2, b"second")
        assert decode(data, file_table(), arena).get("package") == b"second"

    def test_unknown_group_skipped(self, arena):
        group = tag(20, 3) + tag(1, 0) + varint(5) + tag(20, 4)
        msg = decode(group, file_table(), arena)
        assert bytes(msg.unknown) == group

    def test_depth_limit(self, arena):
        data = nested_messages(10)
        decode(data, file_table(), arena)
        with pytest.raises(DecodeError, match="nesting"):
            decode(data, file_table(), arena, max_depth=5)

    def test_deep_unknown_groups_bounded(self, arena):
        data = tag(20, 3) * 500
        with pytest.raises(DecodeError):
            decode(data, file_table(), arena)

    def test_non_bytes_input(self, arena):
        with pytest.raises(DecodeError, match="expected bytes"):
            decode("a.proto", file_table(), arena)


class TestDecodeErrors:
    """Malformed input raises DecodeError and nothing else."""

    @pytest.mark.parametrize(
        "data",
        [
            b"\x00",  # field number 0
            tag(1, 7),  # wire type 7
            tag(1, 6),  # wire type 6
            tag(5, 4),  # end-group without start
            tag(20, 3) + tag(1, 0) + varint(1),  # unterminated group
            tag(20, 3) + tag(21, 4),  # mismatched end-group
            b"\x0a\x05ab",  # length overruns buffer
            b"\x80",  # truncated tag
            tag(999, 0),  # truncated varint payload
            tag(999, 1) + b"\x00\x00",  # truncated fixed64
            tag(999, 5) + b"\x00",  # truncated fixed32
            b"\xff" * 11,  # varint too long
            varint((1 << 29) << 3),  # field number out of range
        ],
    )
    def test_malformed(self, arena, data):
        with pytest.raises(DecodeError):
            decode(data, file_table(), arena)

    def test_every_truncation_is_controlled(self, arena):
        for i in range(len(B_DOC)):
            try:
                decode(B_DOC[:i], file_table(), arena)
            except DecodeError:
                pass

    def test_offset_in_message(self, arena):
        with pytest.raises(DecodeError) as exc_info:
            decode(A_DOC + b"\x00", file_table(), arena)
        assert exc_info.value.offset == len(A_DOC)
        assert f"at byte {len(A_DOC)}" in str(exc_info.value)


class TestEncode:
    def test_reencode_matches_protobuf(self, arena):
        for data in (A_DOC, B_DOC):
            assert encode(decode(data, file_table(), arena)) == data

    def test_unknown_bytes_appended(self, arena):
        extra = tag(999, 0) + varint(7)
        assert encode(decode(extra + A_DOC, file_table(), arena)) == A_DOC + extra

    def test_packed_field_written_packed(self, arena):
        # SourceCodeInfo.Location.path is declared [packed = true]
        location = length_delimited(1, varint(4) + varint(0))
        source_info = length_delimited(1, location)
        data = length_delimited(9, source_info)
        msg = decode(data, file_table(), arena)
        assert encode(msg) == data

    def test_unpacked_input_is_reencoded_packed(self, arena):
        location = tag(1, 0) + varint(4) + tag(1, 0) + varint(0)
        data = length_delimited(9, length_delimited(1, location))
        msg = decode(data, file_table(), arena)
        packed = length_delimited(9, length_delimited(1, length_delimited(1, varint(4) + varint(0))))
        assert encode(msg) == packed

    def test_set_and_encode(self, arena):
        msg = arena.new_message(file_table())
        msg.set("name", "x.proto")
        msg.set("dependency", [b"y.proto"])
        parsed = descriptor_pb2.FileDescriptorProto.FromString(encode(msg))
        assert parsed.name == "x.proto"
        assert list(parsed.dependency) == ["y.proto"]

    def test_wrong_value_type(self, arena):
        msg = arena.new_message(file_table())
        msg.set("name", 5)
        with pytest.raises(EncodeError, match="name"):
            encode(msg)

    def test_repeated_field_must_be_list(self, arena):
        msg = arena.new_message(file_table())
        msg.set("dependency", b"y.proto")
        with pytest.raises(EncodeError):
            encode(msg)

    def test_unknown_field_number(self, arena):
        msg = arena.new_message(file_table())
        msg.fields[999] = 1
        with pytest.raises(EncodeError):
            encode(msg)


class TestArena:
    def test_release_clears_messages(self):
        arena = Arena()
        msg = decode(A_DOC, file_table(), arena)
        assert arena.allocated > 1
        arena.release()
        assert arena.released is True
        assert arena.allocated == 0
        assert msg.fields == {}

    def test_context_manager_releases_on_error(self):
        with pytest.raises(DecodeError):
            with Arena() as arena:
                decode(b"\x00", file_table(), arena)
        assert arena.released is True

    def test_allocation_after_release(self):
        arena = Arena()
        arena.release()
        with pytest.raises(CandidateError):
            arena.new_message(file_table())

    def test_copy_survives_release(self):
        arena = Arena()
        msg = decode(A_DOC, file_table(), arena)
        detached = msg.copy()
        arena.release()
        assert encode(detached) == A_DOC


class TestMessage:
    def test_unknown_field_name(self):
        msg = wire.Message(file_table())
        with pytest.raises(KeyError):
            msg.get("nope")

    def test_repr(self):
        msg = wire.Message(file_table())
        msg.set("name", b"a.proto")
        assert "FileDescriptorProto" in repr(msg)
