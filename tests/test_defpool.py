"""Tests for the candidate DefPool: validation, symbol table, atomic registration."""

import pytest
from google.protobuf import descriptor_pb2

from protodiff.candidate.defpool import DefPool, is_full_identifier, is_identifier
from protodiff.candidate.wire import Arena, decode, encode, file_table
from protodiff.errors import RegistrationError
from tests.documents import FDP, a_proto, b_proto, doc, enum, field, file_proto, message


@pytest.fixture
def pool():
    return DefPool()


def add(pool, proto):
    with Arena() as arena:
        return pool.add_file(decode(doc(proto), file_table(), arena))


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["A", "_x", "foo_bar9"])
    def test_valid(self, name):
        assert is_identifier(name)

    @pytest.mark.parametrize("name", ["", "0", "9a", "a-b", "a.b", "é"])
    def test_invalid(self, name):
        assert not is_identifier(name)

    def test_full_identifier(self):
        assert is_full_identifier("google.protobuf")
        assert not is_full_identifier("google..protobuf")
        assert not is_full_identifier("a.0")


class TestRegistration:
    def test_add_and_lookup(self, pool):
        file_def = add(pool, a_proto())
        assert file_def.name == "a.proto"
        assert file_def.package == "pkg"
        assert "a.proto" in pool
        assert len(pool) == 1
        assert pool.get("a.proto") is file_def
        assert pool.lookup("pkg.A") == "message"
        assert pool.lookup("pkg.A.x") == "field"
        assert [f.name for f in pool] == ["a.proto"]

    def test_dependency_order(self, pool):
        with pytest.raises(RegistrationError, match="has not been loaded"):
            add(pool, b_proto())
        add(pool, a_proto())
        file_def = add(pool, b_proto())
        assert file_def.dependencies == ("a.proto",)

    def test_registered_proto_outlives_arena(self, pool):
        file_def = add(pool, a_proto())
        assert encode(file_def.to_proto()) == doc(a_proto())

    def test_duplicate_file(self, pool):
        add(pool, a_proto())
        with pytest.raises(RegistrationError, match="already loaded") as exc_info:
            add(pool, a_proto())
        assert exc_info.value.filename == "a.proto"

    def test_duplicate_symbol_across_files(self, pool):
        add(pool, a_proto())
        with pytest.raises(RegistrationError, match="duplicate symbol") as exc_info:
            add(pool, file_proto("c.proto", "pkg", messages=[message("A")]))
        assert exc_info.value.element_name == "pkg.A"

    def test_rejection_is_atomic(self, pool):
        bad = file_proto(
            "c.proto",
            "pkg",
            messages=[message("Good"), message("Bad", field("f", 1, FDP.TYPE_MESSAGE, type_name=".pkg.Missing"))],
        )
        with pytest.raises(RegistrationError, match="not defined"):
            add(pool, bad)
        assert "c.proto" not in pool
        assert pool.lookup("pkg.Good") is None

    def test_missing_name(self, pool):
        with pytest.raises(RegistrationError, match="no name"):
            add(pool, descriptor_pb2.FileDescriptorProto(package="pkg"))


class TestFileValidation:
    def test_invalid_package(self, pool):
        with pytest.raises(RegistrationError, match="package"):
            add(pool, file_proto("x.proto", "0"))

    def test_invalid_syntax(self, pool):
        with pytest.raises(RegistrationError, match="syntax"):
            add(pool, file_proto("x.proto", syntax="proto4"))

    def test_duplicate_import(self, pool):
        add(pool, a_proto())
        with pytest.raises(RegistrationError, match="twice"):
            add(pool, file_proto("x.proto", deps=["a.proto", "a.proto"]))

    def test_public_dependency_index(self, pool):
        proto = file_proto("x.proto")
        proto.public_dependency.append(0)
        with pytest.raises(RegistrationError, match="public_dependency"):
            add(pool, proto)

    def test_invalid_utf8_name(self, pool):
        data = b"\x0a\x02\xff\xfe"
        with Arena() as arena:
            with pytest.raises(RegistrationError, match="UTF-8"):
                pool.add_file(decode(data, file_table(), arena))


class TestElementValidation:
    def test_invalid_message_name(self, pool):
        with pytest.raises(RegistrationError, match="invalid message name"):
            add(pool, file_proto("x.proto", messages=[message("1A")]))

    def test_field_number_zero(self, pool):
        with pytest.raises(RegistrationError, match="field number"):
            add(pool, file_proto("x.proto", messages=[message("M", field("f", 0))]))

    def test_field_number_too_large(self, pool):
        with pytest.raises(RegistrationError, match="field number"):
            add(pool, file_proto("x.proto", messages=[message("M", field("f", 1 << 29))]))

    def test_oneof_index_out_of_range(self, pool):
        with pytest.raises(RegistrationError, match="oneof_index"):
            add(pool, file_proto("x.proto", messages=[message("M", field("f", 1, oneof=1), oneofs=["o"])]))

    def test_oneof_index_in_range(self, pool):
        add(pool, file_proto("x.proto", messages=[message("M", field("f", 1, oneof=0), oneofs=["o"])]))

    def test_message_field_without_type_name(self, pool):
        with pytest.raises(RegistrationError, match="missing type_name"):
            add(pool, file_proto("x.proto", messages=[message("M", field("f", 1, FDP.TYPE_MESSAGE))]))

    def test_enum_values_share_parent_scope(self, pool):
        proto = file_proto("x.proto", "pkg", enums=[enum("E1", "FOO"), enum("E2", "FOO")])
        with pytest.raises(RegistrationError, match="duplicate symbol") as exc_info:
            add(pool, proto)
        assert exc_info.value.element_name == "pkg.FOO"

    def test_field_and_nested_type_share_scope(self, pool):
        proto = file_proto("x.proto", messages=[message("M", field("N", 1), nested=[message("N")])])
        with pytest.raises(RegistrationError, match="duplicate symbol"):
            add(pool, proto)

    def test_method_types_must_resolve(self, pool):
        proto = file_proto("x.proto", "pkg", messages=[message("Req")])
        service = proto.service.add(name="S")
        service.method.add(name="Call", input_type=".pkg.Req", output_type=".pkg.Resp")
        with pytest.raises(RegistrationError, match="Resp"):
            add(pool, proto)

    def test_extension_needs_extendee(self, pool):
        proto = file_proto("x.proto", "pkg")
        proto.extension.add(name="ext", number=100, type=FDP.TYPE_INT32, label=FDP.LABEL_OPTIONAL)
        with pytest.raises(RegistrationError, match="extendee"):
            add(pool, proto)


class TestTypeResolution:
    def test_relative_name_resolves_from_inner_scope(self, pool):
        inner = message("Inner")
        outer = message("Outer", field("i", 1, FDP.TYPE_MESSAGE, type_name="Inner"), nested=[inner])
        add(pool, file_proto("x.proto", "pkg", messages=[outer]))
        assert pool.lookup("pkg.Outer.Inner") == "message"

    def test_relative_name_resolves_outwards(self, pool):
        holder = message("Holder", field("t", 1, FDP.TYPE_MESSAGE, type_name="Target"))
        add(pool, file_proto("x.proto", "pkg", messages=[message("Target"), holder]))

    def test_name_from_dependency(self, pool):
        add(pool, a_proto())
        holder = message("Holder", field("a", 1, FDP.TYPE_MESSAGE, type_name="A"))
        add(pool, file_proto("x.proto", "pkg", deps=["a.proto"], messages=[holder]))

    def test_enum_used_as_message(self, pool):
        proto = file_proto(
            "x.proto", "pkg", enums=[enum("E", "ZERO")], messages=[message("M", field("e", 1, FDP.TYPE_MESSAGE, type_name=".pkg.E"))]
        )
        with pytest.raises(RegistrationError, match="not a message type"):
            add(pool, proto)

    def test_message_used_as_enum(self, pool):
        proto = file_proto("x.proto", "pkg", messages=[message("M", field("e", 1, FDP.TYPE_ENUM, type_name=".pkg.M"))])
        with pytest.raises(RegistrationError, match="not an enum type"):
            add(pool, proto)

    def test_field_is_not_a_type(self, pool):
        proto = file_proto("x.proto", "pkg", messages=[message("M", field("f", 1), field("g", 2, FDP.TYPE_MESSAGE, type_name="f"))])
        with pytest.raises(RegistrationError, match="not defined"):
            add(pool, proto)
