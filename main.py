#!/usr/bin/env python3
"""Canvas MCP Server - Main entry point.

Run with ``python main.py`` from a checkout, or use the ``canvas-mcp``
console script after installing the package. Configure with the
environment variables documented in canvas_mcp.main.

Example client configuration:

    {
      "mcpServers": {
        "canvas": {
          "command": "canvas-mcp",
          "env": {
            "CANVAS_API_TOKEN": "...",
            "CANVAS_API_URL": "https://canvas.example.edu"
          }
        }
      }
    }
"""

from __future__ import annotations

import sys

from canvas_mcp.main import main

if __name__ == "__main__":
    sys.exit(main())
