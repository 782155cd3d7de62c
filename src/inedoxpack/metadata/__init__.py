"""Assembly metadata reading for inedoxpack."""

from inedoxpack.metadata.extractor import HOST_SDK_ASSEMBLY, extract
from inedoxpack.metadata.pe import InvalidImageError, MetadataReader

__all__ = ["HOST_SDK_ASSEMBLY", "InvalidImageError", "MetadataReader", "extract"]
