from types import MappingProxyType

import attr

# Symbolic names for machine types and characteristics bits, copied from the
# PE/COFF specification:
#
#    https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
#
# Entries are keyed by (qualified field name, value). The qualified name is
# "<STRUCT NAME>.<field key>" as assigned by destruct.StructType. For
# single-flag fields the value is the whole field; for multi-flag fields it
# is one bit.

MACHINE = "COFF_HEADER.Machine"
COFF_CHARACTERISTICS = "COFF_HEADER.Characteristics"
SECTION_CHARACTERISTICS = "SECTION_HEADER.Characteristics"

_MACHINE_TYPES = [
    (0x0000, "IMAGE_FILE_MACHINE_UNKNOWN"),
    (0x0184, "IMAGE_FILE_MACHINE_ALPHA"),
    (0x0284, "IMAGE_FILE_MACHINE_ALPHA64"),
    (0x01d3, "IMAGE_FILE_MACHINE_AM33"),
    (0x8664, "IMAGE_FILE_MACHINE_AMD64"),
    (0x01c0, "IMAGE_FILE_MACHINE_ARM"),
    (0xaa64, "IMAGE_FILE_MACHINE_ARM64"),
    (0x01c4, "IMAGE_FILE_MACHINE_ARMNT"),
    (0x0ebc, "IMAGE_FILE_MACHINE_EBC"),
    (0x014c, "IMAGE_FILE_MACHINE_I386"),
    (0x0200, "IMAGE_FILE_MACHINE_IA64"),
    (0x6232, "IMAGE_FILE_MACHINE_LOONGARCH32"),
    (0x6264, "IMAGE_FILE_MACHINE_LOONGARCH64"),
    (0x9041, "IMAGE_FILE_MACHINE_M32R"),
    (0x0266, "IMAGE_FILE_MACHINE_MIPS16"),
    (0x0366, "IMAGE_FILE_MACHINE_MIPSFPU"),
    (0x0466, "IMAGE_FILE_MACHINE_MIPSFPU16"),
    (0x01f0, "IMAGE_FILE_MACHINE_POWERPC"),
    (0x01f1, "IMAGE_FILE_MACHINE_POWERPCFP"),
    (0x0166, "IMAGE_FILE_MACHINE_R4000"),
    (0x5032, "IMAGE_FILE_MACHINE_RISCV32"),
    (0x5064, "IMAGE_FILE_MACHINE_RISCV64"),
    (0x5128, "IMAGE_FILE_MACHINE_RISCV128"),
    (0x01a2, "IMAGE_FILE_MACHINE_SH3"),
    (0x01a3, "IMAGE_FILE_MACHINE_SH3DSP"),
    (0x01a6, "IMAGE_FILE_MACHINE_SH4"),
    (0x01a8, "IMAGE_FILE_MACHINE_SH5"),
    (0x01c2, "IMAGE_FILE_MACHINE_THUMB"),
    (0x0169, "IMAGE_FILE_MACHINE_WCEMIPSV2"),
]

_COFF_CHARACTERISTICS = [
    (0x0001, "IMAGE_FILE_RELOCS_STRIPPED"),
    (0x0002, "IMAGE_FILE_EXECUTABLE_IMAGE"),
    (0x0004, "IMAGE_FILE_LINE_NUMS_STRIPPED"),
    (0x0008, "IMAGE_FILE_LOCAL_SYMS_STRIPPED"),
    (0x0010, "IMAGE_FILE_AGGRESSIVE_WS_TRIM"),
    (0x0020, "IMAGE_FILE_LARGE_ADDRESS_AWARE"),
    # 0x0040 is reserved
    (0x0080, "IMAGE_FILE_BYTES_REVERSED_LO"),
    (0x0100, "IMAGE_FILE_32BIT_MACHINE"),
    (0x0200, "IMAGE_FILE_DEBUG_STRIPPED"),
    (0x0400, "IMAGE_FILE_REMOVABLE_RUN_FROM_SWAP"),
    (0x0800, "IMAGE_FILE_NET_RUN_FROM_SWAP"),
    (0x1000, "IMAGE_FILE_SYSTEM"),
    (0x2000, "IMAGE_FILE_DLL"),
    (0x4000, "IMAGE_FILE_UP_SYSTEM_ONLY"),
    (0x8000, "IMAGE_FILE_BYTES_REVERSED_HI"),
]

# The IMAGE_SCN_ALIGN_* values share a 4-bit field at 0x00f00000 and can't
# be looked up bit by bit, so they're left out.
_SECTION_CHARACTERISTICS = [
    (0x00000008, "IMAGE_SCN_TYPE_NO_PAD"),
    (0x00000020, "IMAGE_SCN_CNT_CODE"),
    (0x00000040, "IMAGE_SCN_CNT_INITIALIZED_DATA"),
    (0x00000080, "IMAGE_SCN_CNT_UNINITIALIZED_DATA"),
    (0x00000100, "IMAGE_SCN_LNK_OTHER"),
    (0x00000200, "IMAGE_SCN_LNK_INFO"),
    (0x00000800, "IMAGE_SCN_LNK_REMOVE"),
    (0x00001000, "IMAGE_SCN_LNK_COMDAT"),
    (0x00008000, "IMAGE_SCN_GPREL"),
    (0x00020000, "IMAGE_SCN_MEM_PURGEABLE"),
    (0x00040000, "IMAGE_SCN_MEM_LOCKED"),
    (0x00080000, "IMAGE_SCN_MEM_PRELOAD"),
    (0x01000000, "IMAGE_SCN_LNK_NRELOC_OVFL"),
    (0x02000000, "IMAGE_SCN_MEM_DISCARDABLE"),
    (0x04000000, "IMAGE_SCN_MEM_NOT_CACHED"),
    (0x08000000, "IMAGE_SCN_MEM_NOT_PAGED"),
    (0x10000000, "IMAGE_SCN_MEM_SHARED"),
    (0x20000000, "IMAGE_SCN_MEM_EXECUTE"),
    (0x40000000, "IMAGE_SCN_MEM_READ"),
    (0x80000000, "IMAGE_SCN_MEM_WRITE"),
]


def _freeze(entries):
    return MappingProxyType(dict(entries))


@attr.s(frozen=True, slots=True)
class FlagRegistry(object):
    """Read-only (field name, value) -> symbolic name lookup.

    Build it once and share it; ``extend`` hands back a new registry
    rather than changing this one.
    """
    _entries = attr.ib(converter=_freeze, repr=False)

    @classmethod
    def from_tables(cls, tables):
        entries = {}
        for field_name, values in tables.items():
            for value, name in values:
                entries[(field_name, value)] = name
        return cls(entries)

    def lookup(self, field_name, value):
        return self._entries.get((field_name, value))

    def extend(self, entries):
        merged = dict(self._entries)
        merged.update(entries)
        return FlagRegistry(merged)

    def __contains__(self, key):
        return key in self._entries

    def __len__(self):
        return len(self._entries)


DEFAULT_FLAGS = FlagRegistry.from_tables({
    MACHINE: _MACHINE_TYPES,
    COFF_CHARACTERISTICS: _COFF_CHARACTERISTICS,
    SECTION_CHARACTERISTICS: _SECTION_CHARACTERISTICS,
})
