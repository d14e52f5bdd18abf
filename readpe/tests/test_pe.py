from concurrent.futures import ThreadPoolExecutor, ProcessPoolExecutor

import pytest

from ..destruct import OutOfBounds
from ..pe import (
    DOSHeader, COFFHeader, SectionHeader,
    BadFile, InvalidMagic, InvalidSection,
    iter_headers, view_pe_headers, dump_lines,
)
from ..pe_info import COFF_HEADER_SIZE, SECTION_HEADER_SIZE
from .images import make_image, make_section

def _line(label, value, nest=0):
    return "    " + (" " * nest + label + ":").ljust(34) + value

_SECTIONS = [
    make_section(b".text", 0x1000, 0x1000, 0x200, 0x400,
                 characteristics=0x60000020),
    make_section(b".data", 0x80, 0x2000, 0x200, 0x600,
                 characteristics=0xc0000040),
    make_section(b".reloc", 0x10, 0x3000, 0x200, 0x800, relocations=3,
                 characteristics=0x42100040),
]

def test_layout_constants():
    assert COFF_HEADER_SIZE == 0x18
    assert SECTION_HEADER_SIZE == 0x28

def test_minimal_image():
    buf = make_image()
    assert len(buf) == 0x58
    headers = view_pe_headers(buf)
    assert headers.dos_header.pe_header_offset == 0x40
    assert headers.coff_header.base_offset == 0x40
    assert headers.coff_header.number_of_sections == 0
    assert headers.coff_header.section_offsets() == []
    assert headers.sections == []

    lines = list(dump_lines(buf))
    assert lines[0] == "DOS Header"
    assert lines[-1] == "Sections"
    assert "COFF/File header" in lines
    assert "    Section" not in lines

def test_offset_chaining():
    buf = make_image(_SECTIONS, e_lfanew=0x80, optional_header_size=0xe0)
    headers = view_pe_headers(buf)
    coff = headers.coff_header
    assert coff.base_offset == 0x80
    assert coff.size_of_optional_header == 0xe0
    assert coff.section_table_offset == 0x178
    assert coff.section_offsets() == [0x178, 0x1a0, 0x1c8]
    assert [s.base_offset for s in headers.sections] == [0x178, 0x1a0, 0x1c8]
    assert [s.name for s in headers.sections] == [".text", ".data", ".reloc"]
    assert headers.sections[2]["NumberOfRelocations"] == 3
    assert headers.sections[1]["PointerToRawData"] == 0x600

def test_offsets_recomputed_from_fields():
    coff = COFFHeader(0x10)
    assert coff.section_table_offset == 0x28
    coff.parse(make_image(e_lfanew=0x10, optional_header_size=0xf0))
    assert coff.section_table_offset == 0x10 + 0x18 + 0xf0

@pytest.mark.parametrize("magic, ok", [
    (b"MZ", True),
    (b"ZM", False),
    (b"Mz", False),
    (b"\x00\x00", False),
    (b"PE", False),
    (b"M\x00", False),
])
def test_dos_magic(magic, ok):
    header = DOSHeader()
    header.parse(make_image(dos_magic=magic))
    assert header.validate() == ok

def test_dos_magic_every_first_byte():
    for b in range(256):
        header = DOSHeader()
        header.parse(make_image(dos_magic=bytes([b]) + b"Z"))
        assert header.validate() == (b == 0x4d)

@pytest.mark.parametrize("signature, ok", [
    (b"PE\x00\x00", True),
    (b"PE\x00\x01", False),
    (b"PE\x01\x00", False),
    (b"pe\x00\x00", False),
    (b"\x00\x00PE", False),
])
def test_coff_signature(signature, ok):
    header = COFFHeader(0x40)
    header.parse(make_image(signature=signature))
    assert header.validate() == ok

def test_bad_dos_header():
    with pytest.raises(InvalidMagic) as excinfo:
        view_pe_headers(make_image(dos_magic=b"ZM"))
    assert str(excinfo.value) == "DOS header invalid"
    # Nothing gets printed for a bad DOS header
    with pytest.raises(InvalidMagic):
        next(dump_lines(make_image(dos_magic=b"ZM")))

def test_bad_coff_header():
    buf = make_image(signature=b"NE\x00\x00")
    with pytest.raises(InvalidMagic) as excinfo:
        view_pe_headers(buf)
    assert str(excinfo.value) == "COFF header invalid"
    assert isinstance(excinfo.value, BadFile)

    # The DOS header made it out before the failure
    lines = []
    with pytest.raises(InvalidMagic):
        for line in dump_lines(buf):
            lines.append(line)
    assert lines[0] == "DOS Header"
    assert "COFF/File header" not in lines

def test_lfanew_out_of_bounds():
    buf = bytearray(make_image())
    buf[0x3c:0x40] = (0x1000).to_bytes(4, "little")
    with pytest.raises(OutOfBounds):
        view_pe_headers(bytes(buf))

def test_short_dos_header():
    with pytest.raises(OutOfBounds):
        view_pe_headers(b"MZ" + b"\x00" * 0x20)

def test_truncated_section_table():
    buf = make_image(_SECTIONS, truncate=0x58 + 2 * 0x28 + 0x10)
    tables = []
    with pytest.raises(OutOfBounds):
        for table in iter_headers(buf):
            tables.append(table)
    assert len(tables) == 4
    assert isinstance(tables[-1], SectionHeader)

def test_invalid_section_aborts(monkeypatch):
    buf = make_image(_SECTIONS)
    calls = []

    def validate(self, executor=None):
        calls.append(self.base_offset)
        return self.base_offset != 0x58 + 0x28

    monkeypatch.setattr(SectionHeader, "validate", validate)
    with pytest.raises(InvalidSection) as excinfo:
        view_pe_headers(buf)
    assert excinfo.value.index == 1
    assert excinfo.value.offset == 0x80
    assert str(excinfo.value) == "section header 1 invalid (at 0x80)"
    # never got to the third one
    assert calls == [0x58, 0x80]

def test_parallel_validate():
    buf = make_image(_SECTIONS)
    with ThreadPoolExecutor(max_workers=4) as executor:
        headers = view_pe_headers(buf, executor)
    assert len(headers.sections) == 3
    with ThreadPoolExecutor(max_workers=4) as executor:
        with pytest.raises(InvalidMagic):
            view_pe_headers(make_image(dos_magic=b"XX"), executor)

def test_process_pool_validate():
    buf = make_image(_SECTIONS)
    with ProcessPoolExecutor(max_workers=2) as executor:
        headers = view_pe_headers(buf, executor)
        assert len(headers.sections) == 3
        with pytest.raises(InvalidMagic):
            view_pe_headers(make_image(signature=b"PE\x00\x01"), executor)

def test_sections_follow_section_offsets(monkeypatch):
    buf = make_image(_SECTIONS)
    monkeypatch.setattr(COFFHeader, "section_offsets",
                        lambda self: [0x58 + 2 * 0x28])
    headers = view_pe_headers(buf)
    assert [s.name for s in headers.sections] == [".reloc"]

def test_section_values_line_up_with_headers():
    lines = list(dump_lines(make_image(_SECTIONS[:1])))
    magic = next(line for line in lines if "Magic number:" in line)
    name = next(line for line in lines if "Name:" in line)
    assert magic.index("0x5a4d") == 38
    assert name.index(".text") == 38
    assert name.startswith("        Name:")

def test_reparse():
    buf = make_image(_SECTIONS)
    section = SectionHeader(0x58)
    section.parse(buf)
    first = dict(section)
    section.parse(buf)
    assert dict(section) == first

def test_dump_lines():
    buf = make_image(_SECTIONS[:1], timestamp=1678900000,
                     characteristics=0x0122)
    lines = list(dump_lines(buf))

    assert lines[:3] == [
        "DOS Header",
        _line("Magic number", "0x5a4d (MZ)"),
        _line("Bytes in last page", "0 "),
    ]
    assert _line("PE header offset", "0x40") in lines
    assert _line("Initial SP value", "0") in lines

    coff = lines[lines.index("COFF/File header"):lines.index("Sections")]
    assert coff == [
        "COFF/File header",
        _line("Machine", "0x8664 IMAGE_FILE_MACHINE_AMD64"),
        _line("Number of Sections", "1 "),
        _line("Date/time stamp",
              "1678900000 (Wed Mar 15 17:06:40 2023 UTC)"),
        _line("Symbol Table offset", "0 "),
        _line("Number of symbols", "0 "),
        _line("Size of optional header", "0"),
        _line("Characteristics", "0x122"),
        "    Characteristics names",
        " " * 42 + "IMAGE_FILE_EXECUTABLE_IMAGE",
        " " * 42 + "IMAGE_FILE_LARGE_ADDRESS_AWARE",
        " " * 42 + "IMAGE_FILE_32BIT_MACHINE",
    ]
    assert not any("coff_signature" in line for line in lines)

    section = lines[lines.index("Sections") + 1:]
    assert section == [
        "    Section",
        _line("Name", ".text", nest=4),
        _line("Virtual Size", "0x1000 (4096 bytes)", nest=4),
        _line("Virtual Address", "0x1000", nest=4),
        _line("Size Of Raw Data", "0x200 (512 bytes)", nest=4),
        _line("Pointer To Raw Data", "0x400", nest=4),
        _line("Number Of Relocations", "0", nest=4),
        _line("Characteristics", "0x60000020", nest=4),
        "    Characteristics names",
        " " * 42 + "IMAGE_SCN_CNT_CODE",
        " " * 42 + "IMAGE_SCN_MEM_EXECUTE",
        " " * 42 + "IMAGE_SCN_MEM_READ",
        "",
    ]

def test_dump_unknown_flags():
    buf = make_image(_SECTIONS[2:], machine=0x1234)
    lines = list(dump_lines(buf))
    assert _line("Machine", "0x1234 UNKNOWN FLAG MAPPING: 0x1234") in lines
    # 0x00100000 is IMAGE_SCN_ALIGN_1BYTES, which isn't a single-bit flag
    assert lines[-5:] == [
        "    Characteristics names",
        " " * 42 + "IMAGE_SCN_CNT_INITIALIZED_DATA",
        " " * 42 + "UNKNOWN FLAG MAPPING: 0x100000",
        " " * 42 + "IMAGE_SCN_MEM_READ",
        "",
    ]
