#!/usr/bin/env python3
"""
Start the advisor API with uvicorn.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from advisor.core.config import DEBUG


def main():
    parser = argparse.ArgumentParser(description='Serve the school advisor API')
    parser.add_argument('--port', type=int, default=8000,
                        help='Port to serve on (default: 8000)')
    parser.add_argument('--host', default='127.0.0.1',
                        help='Host to bind to (default: 127.0.0.1)')
    parser.add_argument('--reload', action='store_true',
                        help='Reload on code changes (development only)')

    args = parser.parse_args()

    print(f"Advisor API on http://{args.host}:{args.port}")
    if DEBUG:
        print(f"Docs: http://{args.host}:{args.port}/docs")

    uvicorn.run("advisor.api.main:app", host=args.host, port=args.port, reload=args.reload,
                log_level="debug" if DEBUG else "info")


if __name__ == "__main__":
    main()
