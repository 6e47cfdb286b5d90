"""File type detection from the first bytes written to a file."""

from __future__ import annotations

from enum import IntEnum

MAX_FILE_BYTES_TO_DETERMINE_TYPE = 68


class FileType(IntEnum):
    """Kinds of file the sensor can recognise."""

    UNKNOWN = 0x0000
    PE = 0x0001
    ELF = 0x0002
    UNIVERSAL_BIN = 0x0003
    EICAR = 0x0008
    OFFICE_LEGACY = 0x0010
    OFFICE_OPEN_XML = 0x0011
    PDF = 0x0030
    ARCHIVE_PKZIP = 0x0040
    ARCHIVE_LZH = 0x0041
    ARCHIVE_LZW = 0x0042
    ARCHIVE_RAR = 0x0043
    ARCHIVE_TAR = 0x0044
    ARCHIVE_7ZIP = 0x0045


# The test signature is kept in two parts so that it never appears whole.
_EICAR_HEAD = b"X5O"
_EICAR_TAIL = b"!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"

_ELF_MAGIC = b"\x7fELF"
_EI_CLASS = 4
_ELF_CLASSES = (1, 2)  # ELFCLASS32, ELFCLASS64
_ELF_TYPE_OFFSET = 16
_ELF_HEADER_MIN = 18  # e_ident plus e_type
_ELF_EXECUTABLE_TYPES = (2, 3)  # ET_EXEC, ET_DYN

_DATA_SIGNATURES: tuple[tuple[bytes, FileType], ...] = (
    (b"MZ", FileType.PE),
    (b"\x1f\xa0", FileType.ARCHIVE_LZH),
    (b"\x1f\x9d", FileType.ARCHIVE_LZW),
    (b"%PDF", FileType.PDF),
    (b"PK\x03\x04\x14\x00\x06\x00", FileType.OFFICE_OPEN_XML),
    (b"PK\x03\x04", FileType.ARCHIVE_PKZIP),
    (b"PK\x05\x06", FileType.ARCHIVE_PKZIP),
    (b"PK\x07\x08", FileType.ARCHIVE_PKZIP),
    (b"\xd0\xcf\x11\xe0", FileType.OFFICE_LEGACY),
    (b"ustar", FileType.ARCHIVE_TAR),
    (b"7z\xbc\xaf\x27\x1c", FileType.ARCHIVE_7ZIP),
    (b"Rar!\x1a\x07\x00", FileType.ARCHIVE_RAR),
)

_TYPE_NAMES = {
    FileType.PE: "Binary",
    FileType.ELF: "Binary",
    FileType.UNIVERSAL_BIN: "Binary",
    FileType.EICAR: "Eicar",
    FileType.OFFICE_LEGACY: "OfficeLegacy",
    FileType.OFFICE_OPEN_XML: "OfficeOpenXml",
    FileType.PDF: "Pdf",
    FileType.ARCHIVE_PKZIP: "ArchivePkzip",
    FileType.ARCHIVE_LZH: "ArchiveLzh",
    FileType.ARCHIVE_LZW: "ArchiveLzw",
    FileType.ARCHIVE_RAR: "ArchiveRar",
    FileType.ARCHIVE_TAR: "ArchiveTar",
    FileType.ARCHIVE_7ZIP: "Archive7zip",
}


def _is_executable_elf(buf: bytes) -> bool:
    if len(buf) < _ELF_HEADER_MIN or buf[_EI_CLASS] not in _ELF_CLASSES:
        return False
    e_type = int.from_bytes(
        buf[_ELF_TYPE_OFFSET:_ELF_TYPE_OFFSET + 2], "little"
    )
    return buf.startswith(_ELF_MAGIC) and e_type in _ELF_EXECUTABLE_TYPES


def _is_eicar(buf: bytes) -> bool:
    return (
        len(buf) >= MAX_FILE_BYTES_TO_DETERMINE_TYPE
        and buf.startswith(_EICAR_HEAD)
        and buf[len(_EICAR_HEAD):MAX_FILE_BYTES_TO_DETERMINE_TYPE] == _EICAR_TAIL
    )


def determine_file_type(buffer, determine_data_files: bool = True) -> FileType:
    """Guess the type of a file from the leading bytes in ``buffer``."""
    buf = bytes(buffer)

    if _is_executable_elf(buf):
        return FileType.ELF
    if buf.startswith(b"MZ"):
        return FileType.PE
    if _is_eicar(buf):
        return FileType.EICAR

    if determine_data_files:
        for signature, file_type in _DATA_SIGNATURES:
            if buf.startswith(signature):
                return file_type

    return FileType.UNKNOWN


def file_type_str(file_type) -> str:
    """Short display name of a file type; anything unrecognised is "Unknown"."""
    try:
        return _TYPE_NAMES.get(FileType(file_type), "Unknown")
    except ValueError:
        return "Unknown"