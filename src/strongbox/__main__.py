# Strongbox - Main Entry Point
#
# By default runs the local API server the vault front end talks to.
# --generate-password prints passwords and exits without touching the vault.

import sys
import argparse

from . import __version__
from .core import get_audit_logger, get_settings, EventType, EventSeverity


def main(argv=None):
    """Main entry point for Strongbox."""
    parser = argparse.ArgumentParser(
        description="Strongbox - local encrypted vault for passwords and payment cards",
    )

    parser.add_argument(
        "--host",
        default=None,
        help="API host (default: STRONGBOX_HOST or 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="API port (default: STRONGBOX_PORT or 8000)"
    )

    parser.add_argument(
        "--generate-password",
        type=int,
        nargs="?",
        const=1,
        metavar="N",
        help="Print N generated passwords and exit"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Strongbox v{__version__}"
    )

    args = parser.parse_args(argv)

    if args.generate_password is not None:
        from .vault.password_generator import generate_password

        if args.generate_password < 1:
            parser.error("--generate-password needs a positive count")
        for _ in range(args.generate_password):
            print(generate_password())
        return 0

    try:
        settings = get_settings()
    except ValueError as e:
        parser.error(str(e))

    host = args.host or settings.host
    port = args.port or settings.port

    print("=" * 60)
    print(f"  Strongbox v{__version__}")
    print(f"  Starting API server on {host}:{port}...")
    print(f"  Vault database: {settings.vault_db_path}")
    print("  Press Ctrl+C to stop")
    print("=" * 60)
    print()

    from .api.main import start_api_server

    try:
        start_api_server(host=host, port=port)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Strongbox stopped (user interrupt)"
        )
    except Exception as e:
        print(f"\n\nError: {str(e)}")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.CRITICAL,
            message=f"Strongbox crashed: {str(e)}"
        )
        sys.exit(1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
