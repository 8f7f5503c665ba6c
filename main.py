#!/usr/bin/env python3
"""
Main entry point for running MCP Kit from the project root without installing it.
"""

import sys
from pathlib import Path

# Add the src directory to Python path
src_dir = Path(__file__).parent / "src"
sys.path.insert(0, str(src_dir))


def main():
    """Run the MCP server on the transport selected by TRANSPORT."""
    from mcp_kit.main import main as run

    run()


if __name__ == "__main__":
    main()
