import enum
import struct
import logging
from collections import OrderedDict
from collections.abc import Mapping
from datetime import datetime, timezone

import attr

from .flags import DEFAULT_FLAGS

# Declarative field tables for reading little-endian headers out of a
# larger buffer, and rendering them as text.
#
# Usage:
#   COFF_HEADER = StructType("COFF_HEADER", [
#     # struct code, offset, key, description, rules
#     (I4, 0x00, "Signature", "coff_signature", NO_RULES),
#     (I2, 0x04, "Machine", "Machine", AS_HEX | WITH_FLAG),
#     ...
#   ])
#
# Now you can do:
#
#   table = COFF_HEADER.table(base_offset)
#   table.parse(buf)
#   table["Machine"]
#   for line in table.render_lines(registry):
#       print(line)

log = logging.getLogger(__name__)

I1 = "B"
I2 = "H"
I4 = "I"
I8 = "Q"

LABEL_WIDTH = 34
FLAG_COLUMN = 42
UNKNOWN_FLAG = "UNKNOWN FLAG MAPPING"


class Rules(enum.Flag):
    AS_DEC = 0x01
    AS_HEX = 0x02
    AS_CHAR = 0x04
    WITH_TIME = 0x08
    WITH_FLAG = 0x10
    WITH_FLAGS = 0x20

NO_RULES = Rules(0)
AS_DEC = Rules.AS_DEC
AS_HEX = Rules.AS_HEX
AS_CHAR = Rules.AS_CHAR
WITH_TIME = Rules.WITH_TIME
WITH_FLAG = Rules.WITH_FLAG
WITH_FLAGS = Rules.WITH_FLAGS

FIELD_CODES = frozenset([I1, I2, I4, I8])

# Everything else is rejected when a StructType is built.
SUPPORTED_RULES = frozenset([
    NO_RULES,
    AS_DEC,
    AS_HEX,
    AS_CHAR,
    AS_HEX | AS_CHAR,
    AS_DEC | AS_HEX,
    AS_DEC | WITH_TIME,
    AS_HEX | WITH_FLAG,
    AS_HEX | WITH_FLAGS,
])


class DecodeError(Exception):
    pass

class OutOfBounds(DecodeError):
    def __init__(self, name, offset, size, buf_len):
        super().__init__(
            "{}: {} bytes at {:#x} runs past end of buffer ({:#x} bytes)"
            .format(name, size, offset, buf_len))
        self.name = name
        self.offset = offset
        self.size = size
        self.buf_len = buf_len


def _hex(value):
    # Zero is "0", not "0x0"; header validation compares against this form
    if value == 0:
        return "0"
    return "0x{:x}".format(value)


@attr.s(frozen=True, slots=True)
class FieldDescriptor(object):
    offset = attr.ib()
    description = attr.ib()
    rules = attr.ib(default=NO_RULES)
    code = attr.ib(default=I4)

    @offset.validator
    def _check_offset(self, attribute, value):
        if value < 0:
            raise ValueError("field offset must be >= 0, not {}".format(value))

    @property
    def size(self):
        return struct.calcsize("<" + self.code)

    def validate(self):
        return bool(self.description)


@attr.s(slots=True)
class TypedField(object):
    name = attr.ib()
    descriptor = attr.ib()
    value = attr.ib(default=0)

    @property
    def rules(self):
        return self.descriptor.rules

    @property
    def description(self):
        return self.descriptor.description

    def decode(self, buf, base_offset):
        start = base_offset + self.descriptor.offset
        size = self.descriptor.size
        if base_offset < 0 or start + size > len(buf):
            raise OutOfBounds(self.name, start, size, len(buf))
        (self.value,) = struct.unpack_from(
            "<" + self.descriptor.code, buf, start)

    def validate(self):
        return self.descriptor.validate()

    def _chars(self):
        raw = self.value.to_bytes(self.descriptor.size, "little")
        return raw.rstrip(b"\x00").decode("latin-1")

    def _lookup(self, registry, value):
        if registry is None:
            registry = DEFAULT_FLAGS
        name = registry.lookup(self.name, value)
        if name is None:
            log.debug("%s: no flag name for %#x", self.name, value)
            return "{}: 0x{:x}".format(UNKNOWN_FLAG, value)
        return name

    def render(self, registry=None):
        """Format ``value`` according to the field's rules.

        Returns "" for a field with no rules; the table skips those.
        """
        rules = self.rules
        value = self.value
        if rules & AS_HEX and rules & AS_CHAR:
            s = "{} ({})".format(_hex(value), self._chars())
        elif rules & AS_DEC and rules & AS_HEX:
            s = "{} ({} bytes)".format(_hex(value), value)
        elif rules & AS_DEC:
            s = "{} ".format(value)
        elif rules & AS_HEX:
            s = _hex(value)
        elif rules & AS_CHAR:
            s = self._chars()
        else:
            return ""

        if rules & WITH_TIME:
            stamp = datetime.fromtimestamp(value, timezone.utc)
            s += "({} UTC)".format(stamp.ctime())
        if rules & WITH_FLAG:
            s += " " + self._lookup(registry, value)
        return s

    def flag_names(self, registry=None):
        if not self.rules & WITH_FLAGS:
            return []
        names = []
        for bit in range(8 * self.descriptor.size):
            mask = 1 << bit
            if self.value & mask:
                names.append(self._lookup(registry, mask))
        return names


@attr.s(frozen=True, slots=True)
class Row(object):
    label = attr.ib()
    value = attr.ib()
    # None unless the field decodes individual flag bits
    flags = attr.ib(default=None)


class StructType(object):
    def __init__(self, name, fields, title=None, indent=4, label_indent=0):
        self._name = name
        self.title = title if title is not None else name
        self.indent = indent
        # extra indent inside the label column; values stay aligned
        self.label_indent = label_indent
        self._fields = OrderedDict()
        offsets = set()
        for code, offset, key, description, rules in fields:
            if key in self._fields:
                raise ValueError("{}: duplicate field key {!r}"
                                 .format(name, key))
            if offset in offsets:
                raise ValueError("{}: duplicate field offset {:#x}"
                                 .format(name, offset))
            if code not in FIELD_CODES:
                raise ValueError("{}.{}: unsupported struct code {!r}"
                                 .format(name, key, code))
            if rules not in SUPPORTED_RULES:
                raise ValueError("{}.{}: unsupported rule combination {!r}"
                                 .format(name, key, rules))
            offsets.add(offset)
            self._fields[key] = FieldDescriptor(offset, description,
                                                rules, code)
        self.size = max((d.offset + d.size for d in self._fields.values()),
                        default=0)

    @property
    def name(self):
        return self._name

    @property
    def keys(self):
        return list(self._fields)

    def new_fields(self):
        return OrderedDict(
            (key, TypedField("{}.{}".format(self._name, key), descriptor))
            for key, descriptor in self._fields.items())

    def table(self, base_offset=0):
        return FieldTable(self, base_offset)


class FieldTable(Mapping):
    def __init__(self, struct_type, base_offset=0):
        self.struct_type = struct_type
        self.base_offset = base_offset
        self.fields = struct_type.new_fields()

    def __repr__(self):
        s = "<{} at [{:#x}:]\n".format(self.struct_type.name,
                                       self.base_offset)
        for key, field in self.fields.items():
            s += "  {:>30}: {}\n".format(key, _hex(field.value))
        s += ">"
        return s

    def __getitem__(self, k):
        return self.fields[k].value

    def __len__(self):
        return len(self.fields)

    def __iter__(self):
        return iter(self.fields)

    @property
    def end_offset(self):
        return self.base_offset + self.struct_type.size

    def parse(self, buf):
        log.debug("parsing %s at %#x", self.struct_type.name,
                  self.base_offset)
        for field in self.fields.values():
            field.decode(buf, self.base_offset)

    def validate(self, executor=None):
        fields = list(self.fields.values())
        if executor is None:
            return all(field.validate() for field in fields)
        # list() so every check has finished before we answer
        results = list(executor.map(TypedField.validate, fields))
        return all(results)

    def rows(self, registry=None):
        for field in self.fields.values():
            value = field.render(registry)
            if not value:
                continue
            flags = None
            if field.rules & WITH_FLAGS:
                flags = tuple(field.flag_names(registry))
            yield Row(field.description, value, flags)

    def render_lines(self, registry=None):
        pad = " " * self.struct_type.indent
        nest = " " * self.struct_type.label_indent
        for row in self.rows(registry):
            yield pad + (nest + row.label + ":").ljust(LABEL_WIDTH) + row.value
            if row.flags is not None:
                yield pad + "Characteristics names"
                for name in row.flags:
                    yield " " * FLAG_COLUMN + name
