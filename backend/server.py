#!/usr/bin/env python3
"""
Backend Server Entry Point

Simple uvicorn launcher for the GitOps webhook service.

Usage:
    # Development mode with auto-reload
    python backend/server.py

    # Listen on all interfaces so VCS providers can reach the webhooks
    python backend/server.py --host 0.0.0.0 --port 8080 --no-reload

    # Or use uvicorn directly
    uvicorn backend.app:app --reload
"""

import argparse


def main():
    """Launch the FastAPI backend server."""
    parser = argparse.ArgumentParser(
        description="GitOps Migration Pipeline Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Development mode (auto-reload enabled)
  python backend/server.py

  # Production mode, reachable by webhooks
  python backend/server.py --host 0.0.0.0 --port 8080 --no-reload
        """
    )

    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind the server to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port to run the server on (default: 8080)"
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload (use for production)"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes, ignored with auto-reload (default: 1)"
    )

    args = parser.parse_args()

    print("=" * 80)
    print("GitOps Migration Pipeline Server")
    print("=" * 80)
    print(f"Webhooks will be available at: http://{args.host}:{args.port}/hook")
    print(f"API docs available at: http://{args.host}:{args.port}/docs")
    print("")
    print("Press Ctrl+C to stop the server")
    print("=" * 80)
    print("")

    import uvicorn
    uvicorn.run(
        "backend.app:app",
        host=args.host,
        port=args.port,
        reload=not args.no_reload,
        workers=None if not args.no_reload else args.workers,
        log_level="info"
    )


if __name__ == "__main__":
    main()
