#!/usr/bin/env python3
"""
Escrow Service API Server - Entry Point
"""

import sys


def main():
    """Main entry point for the Escrow Service API server."""
    print("=" * 60)
    print(" ESCROW SERVICE API SERVER")
    print("=" * 60)

    try:
        from .api.production_server import create_production_server
        server = create_production_server()
        server.run()
    except KeyboardInterrupt:
        print("\n🛑 API server stopped by user")
    except Exception as e:
        print(f"❌ API server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
