#!/usr/bin/env python3
"""MISP MCP Server - launcher for running from a source checkout.

Equivalent to the ``misp-mcp`` console script:

    python main.py --misp-url https://misp.local --api-key $MISP_API_KEY
"""

from __future__ import annotations

import sys

from misp_mcp.main import main

if __name__ == "__main__":
    sys.exit(main())
