import logging
from collections import namedtuple

from .destruct import FieldTable
from .flags import DEFAULT_FLAGS
from .pe_info import (
    DOS_HEADER, COFF_HEADER, SECTION_HEADER,
    DOS_MAGIC_DISPLAY, PE_SIGNATURE,
    COFF_HEADER_SIZE, SECTION_HEADER_SIZE,
)

# Theory of operation
# ===================
#
# A PE file starts with a stack of headers, each of which tells you where to
# find the next one:
#
# - the DOS header sits at offset 0. Nearly all of it is junk left over from
#   the DOS stub, except for e_lfanew, the file offset of the PE signature.
# - at e_lfanew there's "PE\0\0", immediately followed by the COFF header.
#   That has the number of sections and the size of the optional header.
# - the optional header comes next. We don't decode it, we just step over
#   it: the section table starts 0x18 + SizeOfOptionalHeader bytes past the
#   signature.
# - the section table is NumberOfSections entries of 0x28 bytes each.
#
# None of these offsets can be trusted until the header they came from has
# been validated, so each stage is parse -> validate -> (use offsets), and
# anything that fails stops the whole walk.

log = logging.getLogger(__name__)


class BadFile(Exception):
    pass

class InvalidMagic(BadFile):
    pass

class InvalidSection(BadFile):
    def __init__(self, index, offset):
        super().__init__("section header {} invalid (at {:#x})"
                         .format(index, offset))
        self.index = index
        self.offset = offset


class DOSHeader(FieldTable):
    def __init__(self, base_offset=0):
        super().__init__(DOS_HEADER, base_offset)

    @property
    def pe_header_offset(self):
        return self.base_offset + self["e_lfanew"]

    def validate(self, executor=None):
        if not super().validate(executor):
            return False
        return self.fields["e_magic"].render() == DOS_MAGIC_DISPLAY


class COFFHeader(FieldTable):
    def __init__(self, base_offset):
        super().__init__(COFF_HEADER, base_offset)

    @property
    def number_of_sections(self):
        return self["NumberOfSections"]

    @property
    def size_of_optional_header(self):
        return self["SizeOfOptionalHeader"]

    @property
    def section_table_offset(self):
        # The section table starts right after the optional header
        return (self.base_offset + COFF_HEADER_SIZE
                + self.size_of_optional_header)

    def section_offsets(self):
        start = self.section_table_offset
        return [start + i * SECTION_HEADER_SIZE
                for i in range(self.number_of_sections)]

    def validate(self, executor=None):
        if not super().validate(executor):
            return False
        return self["Signature"] == PE_SIGNATURE


class SectionHeader(FieldTable):
    def __init__(self, base_offset):
        super().__init__(SECTION_HEADER, base_offset)

    @property
    def name(self):
        return self.fields["Name"].render()


def view_dos_header(buf, executor=None):
    dos_header = DOSHeader()
    dos_header.parse(buf)
    if not dos_header.validate(executor):
        raise InvalidMagic("DOS header invalid")
    return dos_header

def view_coff_header(dos_header, buf, executor=None):
    offset = dos_header.pe_header_offset
    log.debug("COFF header at %#x", offset)
    coff_header = COFFHeader(offset)
    coff_header.parse(buf)
    if not coff_header.validate(executor):
        raise InvalidMagic("COFF header invalid")
    return coff_header

def view_section(offset, index, buf, executor=None):
    section = SectionHeader(offset)
    section.parse(buf)
    if not section.validate(executor):
        raise InvalidSection(index, offset)
    return section

def iter_headers(buf, executor=None):
    """Walk DOS header -> COFF header -> sections, yielding each table once
    it has been parsed and validated.

    Raises OutOfBounds or BadFile at the first table that fails; tables
    before it have already been yielded.
    """
    dos_header = view_dos_header(buf, executor)
    yield dos_header

    coff_header = view_coff_header(dos_header, buf, executor)
    yield coff_header

    count = coff_header.number_of_sections
    log.debug("%d sections, table at %#x (optional header is %#x bytes)",
              count, coff_header.section_table_offset,
              coff_header.size_of_optional_header)
    for i, offset in enumerate(coff_header.section_offsets()):
        yield view_section(offset, i, buf, executor)

PEHeaders = namedtuple("PE_HEADERS",
                       ["dos_header",
                        "coff_header",
                        "sections"])

def view_pe_headers(buf, executor=None):
    tables = list(iter_headers(buf, executor))
    return PEHeaders(tables[0], tables[1], tables[2:])

def dump_lines(buf, registry=DEFAULT_FLAGS, executor=None):
    """Yield the text report for ``buf`` one line at a time.

    Output for a header is produced as soon as that header validates, so a
    caller printing as it goes shows everything up to the bad header.
    """
    for table in iter_headers(buf, executor):
        yield table.struct_type.title
        yield from table.render_lines(registry)
        if isinstance(table, COFFHeader):
            yield "Sections"
        elif isinstance(table, SectionHeader):
            yield ""
