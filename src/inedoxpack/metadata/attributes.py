"""Custom attribute value blob decoding.

A custom attribute value blob (ECMA-335 II.23.3) starts with the prolog
0x0001 followed by the fixed constructor arguments. Only string arguments and
the AppliesToAttribute flags value are needed here.
"""

import struct

from inedoxpack.metadata.pe import InvalidImageError, read_compressed_uint
from inedoxpack.models.plugin import HostProduct

ATTRIBUTE_PROLOG = b"\x01\x00"
NULL_STRING_MARKER = 0xFF

# AppliesToAttribute(InedoProduct) stores its enum argument as an int32
# straight after the prolog.
SUPPORTED_HOSTS_OFFSET = 2
SUPPORTED_HOSTS_SIZE = 4


def read_ser_string(blob: bytes, offset: int) -> tuple[str | None, int]:
    """Read a SerString (packed length + UTF-8, or 0xFF for null).

    Returns:
        Tuple of (string or None, offset after the string)
    """
    if blob[offset] == NULL_STRING_MARKER:
        return None, offset + 1

    length, start = read_compressed_uint(blob, offset)
    end = start + length
    if end > len(blob):
        raise InvalidImageError("String argument runs past the attribute blob")
    return blob[start:end].decode("utf-8"), end


def read_string_argument(blob: bytes) -> str | None:
    """Decode the first constructor argument of an attribute taking a string.

    Raises:
        InvalidImageError: If the blob is not a well-formed attribute value
    """
    if blob[:2] != ATTRIBUTE_PROLOG:
        raise InvalidImageError("Custom attribute blob has no prolog")
    try:
        value, _ = read_ser_string(blob, len(ATTRIBUTE_PROLOG))
    except (IndexError, UnicodeDecodeError) as e:
        raise InvalidImageError(f"Malformed string argument: {e}") from e
    return value


def decode_supported_hosts(blob: bytes) -> HostProduct:
    """Decode the host product flags from a raw AppliesToAttribute blob.

    The attribute's InedoProduct type lives in Inedo.SDK, which can't be
    resolved here, so its argument can't be decoded as a typed enum value.
    Instead the little-endian 32-bit integer following the 2-byte prolog is
    reinterpreted as the flags value.

    Raises:
        InvalidImageError: If the blob is too short to hold the flags
    """
    end = SUPPORTED_HOSTS_OFFSET + SUPPORTED_HOSTS_SIZE
    if len(blob) < end:
        raise InvalidImageError(
            f"AppliesToAttribute blob has {len(blob)} bytes, expected at least {end}"
        )
    value = struct.unpack_from("<I", blob, SUPPORTED_HOSTS_OFFSET)[0]
    return HostProduct(value)
