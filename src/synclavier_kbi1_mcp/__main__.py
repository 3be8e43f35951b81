"""Allow running as ``python -m synclavier_kbi1_mcp``."""

from .server import main

main()
