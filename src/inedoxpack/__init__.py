"""inedoxpack: packages Inedo extension assemblies into universal packages."""

__version__ = "0.1.0"
