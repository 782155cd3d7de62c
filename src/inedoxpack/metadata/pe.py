"""Read-only reader for .NET assembly metadata.

Parses the PE headers, the CLI header and the ECMA-335 metadata tables of an
assembly straight from its bytes. Nothing is loaded or executed and no
referenced assembly is resolved, which is what allows reading attributes whose
types live in assemblies that are not available here (Inedo.SDK).

Only the tables needed to identify an assembly, its references and its
assembly-level custom attributes are decoded, but row sizes are computed for
every table defined by ECMA-335 Partition II so table offsets are exact.
"""

import struct
from dataclasses import dataclass
from pathlib import Path

from inedoxpack.models.plugin import AssemblyVersion

# PE constants
DOS_SIGNATURE = b"MZ"
PE_SIGNATURE = b"PE\x00\x00"
PE32_MAGIC = 0x10B
PE32_PLUS_MAGIC = 0x20B
CLI_HEADER_DIRECTORY = 14

# Metadata root signature ("BSJB")
METADATA_SIGNATURE = 0x424A5342

# HeapSizes flags in the #~ stream header
HEAP_STRING_WIDE = 0x01
HEAP_GUID_WIDE = 0x02
HEAP_BLOB_WIDE = 0x04
HEAP_EXTRA_DATA = 0x40

# Table ids
MODULE = 0x00
TYPE_REF = 0x01
TYPE_DEF = 0x02
FIELD_PTR = 0x03
FIELD = 0x04
METHOD_PTR = 0x05
METHOD_DEF = 0x06
PARAM_PTR = 0x07
PARAM = 0x08
INTERFACE_IMPL = 0x09
MEMBER_REF = 0x0A
CONSTANT = 0x0B
CUSTOM_ATTRIBUTE = 0x0C
FIELD_MARSHAL = 0x0D
DECL_SECURITY = 0x0E
CLASS_LAYOUT = 0x0F
FIELD_LAYOUT = 0x10
STANDALONE_SIG = 0x11
EVENT_MAP = 0x12
EVENT_PTR = 0x13
EVENT = 0x14
PROPERTY_MAP = 0x15
PROPERTY_PTR = 0x16
PROPERTY = 0x17
METHOD_SEMANTICS = 0x18
METHOD_IMPL = 0x19
MODULE_REF = 0x1A
TYPE_SPEC = 0x1B
IMPL_MAP = 0x1C
FIELD_RVA = 0x1D
ENC_LOG = 0x1E
ENC_MAP = 0x1F
ASSEMBLY = 0x20
ASSEMBLY_PROCESSOR = 0x21
ASSEMBLY_OS = 0x22
ASSEMBLY_REF = 0x23
ASSEMBLY_REF_PROCESSOR = 0x24
ASSEMBLY_REF_OS = 0x25
FILE = 0x26
EXPORTED_TYPE = 0x27
MANIFEST_RESOURCE = 0x28
NESTED_CLASS = 0x29
GENERIC_PARAM = 0x2A
METHOD_SPEC = 0x2B
GENERIC_PARAM_CONSTRAINT = 0x2C

# Coded index kinds: (tag bits, tables by tag; None marks an unused tag)
CODED_INDEXES: dict[str, tuple[int, tuple[int | None, ...]]] = {
    "TypeDefOrRef": (2, (TYPE_DEF, TYPE_REF, TYPE_SPEC)),
    "HasConstant": (2, (FIELD, PARAM, PROPERTY)),
    "HasCustomAttribute": (
        5,
        (
            METHOD_DEF, FIELD, TYPE_REF, TYPE_DEF, PARAM, INTERFACE_IMPL,
            MEMBER_REF, MODULE, DECL_SECURITY, PROPERTY, EVENT, STANDALONE_SIG,
            MODULE_REF, TYPE_SPEC, ASSEMBLY, ASSEMBLY_REF, FILE, EXPORTED_TYPE,
            MANIFEST_RESOURCE, GENERIC_PARAM, GENERIC_PARAM_CONSTRAINT, METHOD_SPEC,
        ),
    ),
    "HasFieldMarshal": (1, (FIELD, PARAM)),
    "HasDeclSecurity": (2, (TYPE_DEF, METHOD_DEF, ASSEMBLY)),
    "MemberRefParent": (3, (TYPE_DEF, TYPE_REF, MODULE_REF, METHOD_DEF, TYPE_SPEC)),
    "HasSemantics": (1, (EVENT, PROPERTY)),
    "MethodDefOrRef": (1, (METHOD_DEF, MEMBER_REF)),
    "MemberForwarded": (1, (FIELD, METHOD_DEF)),
    "Implementation": (2, (FILE, ASSEMBLY_REF, EXPORTED_TYPE)),
    "CustomAttributeType": (3, (None, None, METHOD_DEF, MEMBER_REF, None)),
    "ResolutionScope": (2, (MODULE, MODULE_REF, ASSEMBLY_REF, TYPE_REF)),
    "TypeOrMethodDef": (1, (TYPE_DEF, METHOD_DEF)),
}

# Column kinds: "u1"/"u2"/"u4" fixed width, "str"/"guid"/"blob" heap indexes,
# a table id for a simple row index, or a CODED_INDEXES key.
TABLE_SCHEMAS: dict[int, tuple[tuple[str, str | int], ...]] = {
    MODULE: (("generation", "u2"), ("name", "str"), ("mvid", "guid"),
             ("enc_id", "guid"), ("enc_base_id", "guid")),
    TYPE_REF: (("resolution_scope", "ResolutionScope"), ("name", "str"),
               ("namespace", "str")),
    TYPE_DEF: (("flags", "u4"), ("name", "str"), ("namespace", "str"),
               ("extends", "TypeDefOrRef"), ("field_list", FIELD),
               ("method_list", METHOD_DEF)),
    FIELD_PTR: (("field", FIELD),),
    FIELD: (("flags", "u2"), ("name", "str"), ("signature", "blob")),
    METHOD_PTR: (("method", METHOD_DEF),),
    METHOD_DEF: (("rva", "u4"), ("impl_flags", "u2"), ("flags", "u2"),
                 ("name", "str"), ("signature", "blob"), ("param_list", PARAM)),
    PARAM_PTR: (("param", PARAM),),
    PARAM: (("flags", "u2"), ("sequence", "u2"), ("name", "str")),
    INTERFACE_IMPL: (("class", TYPE_DEF), ("interface", "TypeDefOrRef")),
    MEMBER_REF: (("class", "MemberRefParent"), ("name", "str"),
                 ("signature", "blob")),
    CONSTANT: (("type", "u1"), ("padding", "u1"), ("parent", "HasConstant"),
               ("value", "blob")),
    CUSTOM_ATTRIBUTE: (("parent", "HasCustomAttribute"),
                       ("type", "CustomAttributeType"), ("value", "blob")),
    FIELD_MARSHAL: (("parent", "HasFieldMarshal"), ("native_type", "blob")),
    DECL_SECURITY: (("action", "u2"), ("parent", "HasDeclSecurity"),
                    ("permission_set", "blob")),
    CLASS_LAYOUT: (("packing_size", "u2"), ("class_size", "u4"),
                   ("parent", TYPE_DEF)),
    FIELD_LAYOUT: (("offset", "u4"), ("field", FIELD)),
    STANDALONE_SIG: (("signature", "blob"),),
    EVENT_MAP: (("parent", TYPE_DEF), ("event_list", EVENT)),
    EVENT_PTR: (("event", EVENT),),
    EVENT: (("flags", "u2"), ("name", "str"), ("event_type", "TypeDefOrRef")),
    PROPERTY_MAP: (("parent", TYPE_DEF), ("property_list", PROPERTY)),
    PROPERTY_PTR: (("property", PROPERTY),),
    PROPERTY: (("flags", "u2"), ("name", "str"), ("type", "blob")),
    METHOD_SEMANTICS: (("semantics", "u2"), ("method", METHOD_DEF),
                       ("association", "HasSemantics")),
    METHOD_IMPL: (("class", TYPE_DEF), ("method_body", "MethodDefOrRef"),
                  ("method_declaration", "MethodDefOrRef")),
    MODULE_REF: (("name", "str"),),
    TYPE_SPEC: (("signature", "blob"),),
    IMPL_MAP: (("flags", "u2"), ("member_forwarded", "MemberForwarded"),
               ("import_name", "str"), ("import_scope", MODULE_REF)),
    FIELD_RVA: (("rva", "u4"), ("field", FIELD)),
    ENC_LOG: (("token", "u4"), ("func_code", "u4")),
    ENC_MAP: (("token", "u4"),),
    ASSEMBLY: (("hash_alg_id", "u4"), ("major", "u2"), ("minor", "u2"),
               ("build", "u2"), ("revision", "u2"), ("flags", "u4"),
               ("public_key", "blob"), ("name", "str"), ("culture", "str")),
    ASSEMBLY_PROCESSOR: (("processor", "u4"),),
    ASSEMBLY_OS: (("platform_id", "u4"), ("major", "u4"), ("minor", "u4")),
    ASSEMBLY_REF: (("major", "u2"), ("minor", "u2"), ("build", "u2"),
                   ("revision", "u2"), ("flags", "u4"),
                   ("public_key_or_token", "blob"), ("name", "str"),
                   ("culture", "str"), ("hash_value", "blob")),
    ASSEMBLY_REF_PROCESSOR: (("processor", "u4"), ("assembly_ref", ASSEMBLY_REF)),
    ASSEMBLY_REF_OS: (("platform_id", "u4"), ("major", "u4"), ("minor", "u4"),
                      ("assembly_ref", ASSEMBLY_REF)),
    FILE: (("flags", "u4"), ("name", "str"), ("hash_value", "blob")),
    EXPORTED_TYPE: (("flags", "u4"), ("type_def_id", "u4"), ("name", "str"),
                    ("namespace", "str"), ("implementation", "Implementation")),
    MANIFEST_RESOURCE: (("offset", "u4"), ("flags", "u4"), ("name", "str"),
                        ("implementation", "Implementation")),
    NESTED_CLASS: (("nested_class", TYPE_DEF), ("enclosing_class", TYPE_DEF)),
    GENERIC_PARAM: (("number", "u2"), ("flags", "u2"),
                    ("owner", "TypeOrMethodDef"), ("name", "str")),
    METHOD_SPEC: (("method", "MethodDefOrRef"), ("instantiation", "blob")),
    GENERIC_PARAM_CONSTRAINT: (("owner", GENERIC_PARAM),
                               ("constraint", "TypeDefOrRef")),
}

_FIXED_WIDTHS = {"u1": 1, "u2": 2, "u4": 4}


class InvalidImageError(ValueError):
    """File is not a readable .NET assembly."""


def read_compressed_uint(data: bytes, offset: int) -> tuple[int, int]:
    """Read an ECMA-335 compressed unsigned integer.

    Returns:
        Tuple of (value, offset after the integer)
    """
    first = data[offset]
    if first & 0x80 == 0:
        return first, offset + 1
    if first & 0xC0 == 0x80:
        return ((first & 0x3F) << 8) | data[offset + 1], offset + 2
    if first & 0xE0 == 0xC0:
        value = ((first & 0x1F) << 24) | (data[offset + 1] << 16)
        value |= (data[offset + 2] << 8) | data[offset + 3]
        return value, offset + 4
    raise InvalidImageError(f"Invalid compressed integer at offset {offset}")


@dataclass(frozen=True)
class Section:
    """A PE section header."""

    name: str
    virtual_size: int
    virtual_address: int
    raw_size: int
    raw_pointer: int

    def contains(self, rva: int) -> bool:
        return self.virtual_address <= rva < self.virtual_address + max(self.virtual_size, self.raw_size)


@dataclass(frozen=True)
class AssemblyReference:
    """A row of the AssemblyRef table."""

    name: str
    version: AssemblyVersion
    culture: str = ""


@dataclass(frozen=True)
class CustomAttributeRecord:
    """An assembly-level custom attribute with its raw value blob."""

    type_name: str | None
    blob: bytes


class MetadataReader:
    """Reader for the metadata of a single .NET assembly image."""

    def __init__(self, data: bytes) -> None:
        """Parse headers and table layout.

        Args:
            data: Complete contents of the assembly file

        Raises:
            InvalidImageError: If data is not a .NET assembly image
        """
        self.data = data
        self.sections: list[Section] = []
        self.streams: dict[str, bytes] = {}
        self.runtime_version = ""
        self._rows = [0] * 64
        self._table_offsets: dict[int, int] = {}
        self._row_sizes: dict[int, int] = {}
        self._columns: dict[int, list[tuple[str, str | int, int]]] = {}
        self._type_def_methods: list[int] | None = None

        try:
            metadata_offset = self._parse_pe_headers()
            self._parse_metadata_root(metadata_offset)
            self._parse_table_stream()
        except (struct.error, IndexError) as e:
            raise InvalidImageError(f"Truncated or corrupt image: {e}") from e

    @classmethod
    def from_file(cls, path: Path | str) -> "MetadataReader":
        """Read an assembly from disk.

        The file handle is closed before parsing starts.
        """
        with open(path, "rb") as f:
            data = f.read()
        return cls(data)

    # -- PE layer -----------------------------------------------------------

    def _parse_pe_headers(self) -> int:
        data = self.data
        if len(data) < 0x40 or data[:2] != DOS_SIGNATURE:
            raise InvalidImageError("Missing MZ signature")

        pe_offset = struct.unpack_from("<I", data, 0x3C)[0]
        if data[pe_offset:pe_offset + 4] != PE_SIGNATURE:
            raise InvalidImageError("Missing PE signature")

        coff = pe_offset + 4
        number_of_sections = struct.unpack_from("<H", data, coff + 2)[0]
        optional_size = struct.unpack_from("<H", data, coff + 16)[0]
        optional = coff + 20

        magic = struct.unpack_from("<H", data, optional)[0]
        if magic == PE32_MAGIC:
            directory_count_offset = optional + 92
        elif magic == PE32_PLUS_MAGIC:
            directory_count_offset = optional + 108
        else:
            raise InvalidImageError(f"Unknown optional header magic 0x{magic:x}")

        directory_count = struct.unpack_from("<I", data, directory_count_offset)[0]
        if directory_count <= CLI_HEADER_DIRECTORY:
            raise InvalidImageError("No CLI header data directory")

        directory = directory_count_offset + 4 + CLI_HEADER_DIRECTORY * 8
        cli_rva, cli_size = struct.unpack_from("<II", data, directory)
        if cli_rva == 0 or cli_size == 0:
            raise InvalidImageError("Not a .NET assembly (no CLI header)")

        section_table = optional + optional_size
        for i in range(number_of_sections):
            name, vsize, vaddr, raw_size, raw_ptr = struct.unpack_from(
                "<8sIIII", data, section_table + i * 40
            )
            self.sections.append(
                Section(
                    name=name.rstrip(b"\x00").decode("ascii", errors="replace"),
                    virtual_size=vsize,
                    virtual_address=vaddr,
                    raw_size=raw_size,
                    raw_pointer=raw_ptr,
                )
            )

        cli_offset = self.rva_to_offset(cli_rva)
        metadata_rva, metadata_size = struct.unpack_from("<II", data, cli_offset + 8)
        if metadata_rva == 0:
            raise InvalidImageError("CLI header has no metadata")
        return self.rva_to_offset(metadata_rva)

    def rva_to_offset(self, rva: int) -> int:
        """Translate a relative virtual address to a file offset."""
        for section in self.sections:
            if section.contains(rva):
                return rva - section.virtual_address + section.raw_pointer
        raise InvalidImageError(f"RVA 0x{rva:x} is outside every section")

    # -- Metadata root ------------------------------------------------------

    def _parse_metadata_root(self, offset: int) -> None:
        data = self.data
        signature = struct.unpack_from("<I", data, offset)[0]
        if signature != METADATA_SIGNATURE:
            raise InvalidImageError("Missing metadata signature")

        version_length = struct.unpack_from("<I", data, offset + 12)[0]
        version = data[offset + 16:offset + 16 + version_length]
        self.runtime_version = version.split(b"\x00", 1)[0].decode("ascii", errors="replace")

        pos = offset + 16 + version_length
        stream_count = struct.unpack_from("<H", data, pos + 2)[0]
        pos += 4

        for _ in range(stream_count):
            stream_offset, stream_size = struct.unpack_from("<II", data, pos)
            pos += 8
            end = data.index(b"\x00", pos)
            name = data[pos:end].decode("ascii", errors="replace")
            # Name plus terminator, padded to a 4-byte boundary
            pos += (end - pos + 4) & ~3
            start = offset + stream_offset
            self.streams[name] = data[start:start + stream_size]

    # -- Table stream -------------------------------------------------------

    def _parse_table_stream(self) -> None:
        stream = self.streams.get("#~") or self.streams.get("#-")
        if stream is None:
            raise InvalidImageError("Metadata has no table stream")

        heap_sizes = stream[6]
        valid = struct.unpack_from("<Q", stream, 8)[0]
        pos = 24
        for table in range(64):
            if valid >> table & 1:
                self._rows[table] = struct.unpack_from("<I", stream, pos)[0]
                pos += 4
        if heap_sizes & HEAP_EXTRA_DATA:
            pos += 4

        self._string_width = 4 if heap_sizes & HEAP_STRING_WIDE else 2
        self._guid_width = 4 if heap_sizes & HEAP_GUID_WIDE else 2
        self._blob_width = 4 if heap_sizes & HEAP_BLOB_WIDE else 2
        self._tables = stream

        for table in range(64):
            if not self._rows[table]:
                continue
            schema = TABLE_SCHEMAS.get(table)
            if schema is None:
                # Layout of later tables is unknown; they stay unreadable.
                break
            columns = []
            row_size = 0
            for name, kind in schema:
                width = self._column_width(kind)
                columns.append((name, kind, width))
                row_size += width
            self._columns[table] = columns
            self._row_sizes[table] = row_size
            self._table_offsets[table] = pos
            pos += row_size * self._rows[table]

        if pos > len(stream):
            raise InvalidImageError("Table stream is shorter than its row counts")

    def _column_width(self, kind: str | int) -> int:
        if isinstance(kind, int):
            return 2 if self._rows[kind] < 0x10000 else 4
        if kind in _FIXED_WIDTHS:
            return _FIXED_WIDTHS[kind]
        if kind == "str":
            return self._string_width
        if kind == "guid":
            return self._guid_width
        if kind == "blob":
            return self._blob_width

        bits, tables = CODED_INDEXES[kind]
        max_rows = max(self._rows[t] if t is not None else 0 for t in tables)
        return 2 if max_rows < (1 << (16 - bits)) else 4

    def row_count(self, table: int) -> int:
        """Number of rows in a metadata table."""
        return self._rows[table]

    def read_row(self, table: int, index: int) -> dict[str, int]:
        """Read raw column values of a row.

        Args:
            table: Table id
            index: 1-based row index

        Returns:
            Mapping of column name to raw value (heap offsets and indexes
            are not resolved)
        """
        if not 1 <= index <= self._rows[table]:
            raise InvalidImageError(f"Row {index} out of range for table 0x{table:02x}")
        if table not in self._table_offsets:
            raise InvalidImageError(f"Table 0x{table:02x} cannot be located")

        pos = self._table_offsets[table] + (index - 1) * self._row_sizes[table]
        row: dict[str, int] = {}
        try:
            for name, _kind, width in self._columns[table]:
                if width == 1:
                    row[name] = self._tables[pos]
                elif width == 2:
                    row[name] = struct.unpack_from("<H", self._tables, pos)[0]
                else:
                    row[name] = struct.unpack_from("<I", self._tables, pos)[0]
                pos += width
        except (struct.error, IndexError) as e:
            raise InvalidImageError(f"Truncated row in table 0x{table:02x}") from e
        return row

    @staticmethod
    def decode_coded_index(kind: str, value: int) -> tuple[int | None, int]:
        """Split a coded index into (table id, 1-based row)."""
        bits, tables = CODED_INDEXES[kind]
        tag = value & ((1 << bits) - 1)
        table = tables[tag] if tag < len(tables) else None
        return table, value >> bits

    # -- Heaps --------------------------------------------------------------

    def get_string(self, index: int) -> str:
        """Read a null-terminated UTF-8 string from the #Strings heap."""
        heap = self.streams.get("#Strings", b"")
        if index == 0:
            return ""
        if index >= len(heap):
            raise InvalidImageError(f"String index {index} outside #Strings heap")
        end = heap.find(b"\x00", index)
        if end < 0:
            end = len(heap)
        return heap[index:end].decode("utf-8", errors="replace")

    def get_blob(self, index: int) -> bytes:
        """Read a length-prefixed entry from the #Blob heap."""
        heap = self.streams.get("#Blob", b"")
        if index == 0:
            return b""
        try:
            length, start = read_compressed_uint(heap, index)
        except IndexError as e:
            raise InvalidImageError(f"Blob index {index} outside #Blob heap") from e
        if start + length > len(heap):
            raise InvalidImageError(f"Blob at {index} runs past the #Blob heap")
        return bytes(heap[start:start + length])

    # -- Assembly identity --------------------------------------------------

    def _assembly_row(self) -> dict[str, int]:
        if self._rows[ASSEMBLY] == 0:
            raise InvalidImageError("Image has no Assembly manifest")
        return self.read_row(ASSEMBLY, 1)

    @property
    def assembly_name(self) -> str:
        return self.get_string(self._assembly_row()["name"])

    @property
    def assembly_version(self) -> AssemblyVersion:
        row = self._assembly_row()
        return AssemblyVersion(row["major"], row["minor"], row["build"], row["revision"])

    def assembly_references(self) -> list[AssemblyReference]:
        """All rows of the AssemblyRef table, in table order."""
        references = []
        for index in range(1, self._rows[ASSEMBLY_REF] + 1):
            row = self.read_row(ASSEMBLY_REF, index)
            references.append(
                AssemblyReference(
                    name=self.get_string(row["name"]),
                    version=AssemblyVersion(
                        row["major"], row["minor"], row["build"], row["revision"]
                    ),
                    culture=self.get_string(row["culture"]),
                )
            )
        return references

    # -- Type names ---------------------------------------------------------

    def _type_ref_name(self, index: int, depth: int = 0) -> str:
        row = self.read_row(TYPE_REF, index)
        name = self.get_string(row["name"])
        scope_table, scope_row = self.decode_coded_index(
            "ResolutionScope", row["resolution_scope"]
        )
        if scope_table == TYPE_REF and scope_row and depth < 16:
            return f"{self._type_ref_name(scope_row, depth + 1)}/{name}"
        namespace = self.get_string(row["namespace"])
        return f"{namespace}.{name}" if namespace else name

    def _type_def_name(self, index: int) -> str:
        row = self.read_row(TYPE_DEF, index)
        name = self.get_string(row["name"])
        namespace = self.get_string(row["namespace"])
        return f"{namespace}.{name}" if namespace else name

    def _owner_of_method(self, method: int) -> int | None:
        if self._type_def_methods is None:
            self._type_def_methods = [
                self.read_row(TYPE_DEF, i)["method_list"]
                for i in range(1, self._rows[TYPE_DEF] + 1)
            ]
        owner = None
        for i, first_method in enumerate(self._type_def_methods, start=1):
            if first_method <= method:
                owner = i
            else:
                break
        return owner

    def _type_name(self, table: int | None, index: int) -> str | None:
        if table == TYPE_REF:
            return self._type_ref_name(index)
        if table == TYPE_DEF:
            return self._type_def_name(index)
        return None

    def attribute_type_name(self, constructor: int) -> str | None:
        """Full name of the type declaring a custom attribute constructor.

        Args:
            constructor: Raw CustomAttributeType coded index
        """
        table, index = self.decode_coded_index("CustomAttributeType", constructor)
        if table == MEMBER_REF:
            parent = self.read_row(MEMBER_REF, index)["class"]
            return self._type_name(*self.decode_coded_index("MemberRefParent", parent))
        if table == METHOD_DEF:
            owner = self._owner_of_method(index)
            return self._type_def_name(owner) if owner else None
        return None

    # -- Custom attributes --------------------------------------------------

    def assembly_attributes(self) -> list[CustomAttributeRecord]:
        """Custom attributes applied to the assembly itself, in table order."""
        attributes = []
        for index in range(1, self._rows[CUSTOM_ATTRIBUTE] + 1):
            row = self.read_row(CUSTOM_ATTRIBUTE, index)
            parent_table, _ = self.decode_coded_index("HasCustomAttribute", row["parent"])
            if parent_table != ASSEMBLY:
                continue
            attributes.append(
                CustomAttributeRecord(
                    type_name=self.attribute_type_name(row["type"]),
                    blob=self.get_blob(row["value"]),
                )
            )
        return attributes

    def find_assembly_attribute(self, full_name: str) -> CustomAttributeRecord | None:
        """First assembly-level attribute whose type has the given full name."""
        for attribute in self.assembly_attributes():
            if attribute.type_name == full_name:
                return attribute
        return None
