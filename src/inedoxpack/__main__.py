"""Allow running as ``python -m inedoxpack``."""

from inedoxpack.cli.main import main

main()
