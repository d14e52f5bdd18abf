from .destruct import (
    StructType, I2, I4, I8,
    NO_RULES, AS_DEC, AS_HEX, AS_CHAR, WITH_TIME, WITH_FLAG, WITH_FLAGS,
)

# Layouts here come straight from the PE/COFF specification:
#
#    https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
#
# plus, for the DOS stub header (which Microsoft mostly waves away):
#
#    http://www.sunshine2k.de/reversing/tuts/tut_pe.htm
#
# Field keys use the same names as those documents, so they're greppable.
# Descriptions are what gets printed. Order in each list is display order.

################################################################
# Constants
################################################################

DOS_MAGIC = 0x5a4d              # "MZ"
PE_SIGNATURE = 0x00004550       # "PE\0\0"

# How DOS_MAGIC renders under AS_HEX | AS_CHAR
DOS_MAGIC_DISPLAY = "{:#x} ({})".format(
    DOS_MAGIC, DOS_MAGIC.to_bytes(2, "little").decode("ascii"))

# PE signature (4) + COFF file header (20); the optional header starts here
COFF_HEADER_SIZE = 0x18
SECTION_HEADER_SIZE = 0x28

################################################################
# Structure definitions
################################################################

DOS_HEADER = StructType(
    "DOS_HEADER", [
        (I2, 0x00, "e_magic",    "Magic number",                AS_HEX | AS_CHAR),
        (I2, 0x02, "e_cblp",     "Bytes in last page",          AS_DEC),
        (I2, 0x04, "e_cp",       "Pages in file",               AS_DEC),
        (I2, 0x06, "e_crlc",     "Relocations",                 AS_DEC),
        (I2, 0x08, "e_cparhdr",  "Size of header in paragraphs", AS_DEC),
        (I2, 0x0A, "e_minalloc", "Minimum extra paragraphs",    AS_DEC),
        (I2, 0x0C, "e_maxalloc", "Maximum extra paragraphs",    AS_DEC),
        (I2, 0x0E, "e_ss",       "Initial (relative) SS value", AS_DEC),
        (I2, 0x10, "e_sp",       "Initial SP value",            AS_HEX),
        (I2, 0x14, "e_ip",       "Initial IP value",            AS_HEX),
        (I2, 0x16, "e_cs",       "Initial (relative) CS value", AS_HEX),
        (I2, 0x18, "e_lfarlc",   "Address of relocation table", AS_HEX),
        (I2, 0x1A, "e_ovno",     "Overlay number",              AS_DEC),
        (I2, 0x24, "e_oemid",    "OEM identifier",              AS_DEC),
        (I2, 0x26, "e_oeminfo",  "OEM information",             AS_DEC),
        # file offset of the "PE\0\0" signature
        (I4, 0x3C, "e_lfanew",   "PE header offset",            AS_HEX),
    ],
    title="DOS Header")

# The signature is folded into this table, so offsets are relative to the
# "PE\0\0" rather than to the COFF header proper.
COFF_HEADER = StructType(
    "COFF_HEADER", [
        # checked by validation, never printed
        (I4, 0x00, "Signature",            "coff_signature",          NO_RULES),
        (I2, 0x04, "Machine",              "Machine",                 AS_HEX | WITH_FLAG),
        (I2, 0x06, "NumberOfSections",     "Number of Sections",      AS_DEC),
        (I4, 0x08, "TimeDateStamp",        "Date/time stamp",         AS_DEC | WITH_TIME),
        (I4, 0x0C, "PointerToSymbolTable", "Symbol Table offset",     AS_DEC),
        (I4, 0x10, "NumberOfSymbols",      "Number of symbols",       AS_DEC),
        (I2, 0x14, "SizeOfOptionalHeader", "Size of optional header", AS_HEX),
        (I2, 0x16, "Characteristics",      "Characteristics",         AS_HEX | WITH_FLAGS),
    ],
    title="COFF/File header")

SECTION_HEADER = StructType(
    "SECTION_HEADER", [
        # 8 bytes, NUL padded
        (I8, 0x00, "Name",                "Name",                  AS_CHAR),
        (I4, 0x08, "VirtualSize",         "Virtual Size",          AS_DEC | AS_HEX),
        (I4, 0x0C, "VirtualAddress",      "Virtual Address",       AS_HEX),
        (I4, 0x10, "SizeOfRawData",       "Size Of Raw Data",      AS_DEC | AS_HEX),
        (I4, 0x14, "PointerToRawData",    "Pointer To Raw Data",   AS_HEX),
        (I2, 0x20, "NumberOfRelocations", "Number Of Relocations", AS_HEX),
        (I4, 0x24, "Characteristics",     "Characteristics",       AS_HEX | WITH_FLAGS),
    ],
    title="    Section",
    indent=4,
    label_indent=4)
