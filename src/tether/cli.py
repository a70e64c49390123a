#!/usr/bin/env python3

import argparse
import logging
import sys

from .config import load_config
from .transfer import StreamCollector, create_receiver, create_sender, send_file


def setup_logging(debug: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _parse_destination(value: str):
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Invalid destination '{value}'. Use 'host:port'")
    return host, int(port)


# ---------------------------------------------------------------------------

def cmd_send(args) -> int:
    """Handle send command."""
    try:
        config = load_config(args.config)
        dest_host, dest_port = _parse_destination(args.to)

        print(f"Sending {args.file} to {dest_host}:{dest_port}")

        with create_sender(
            dest_host,
            dest_port,
            config=config,
            window_size=args.window_size,
        ) as sender:
            completed = send_file(sender, args.file, timeout=args.timeout)
            status = sender.status()

        if not completed:
            print("Transfer did not complete within timeout")
            return 1

        print("Transfer completed successfully!")
        print(f"Frames sent: {status['frames_sent']}")
        print(f"Frames retransmitted: {status['retransmissions']}")
        return 0

    except Exception as e:
        print(f"Error: {e}")
        return 1


def cmd_recv(args) -> int:
    """Handle recv command."""
    try:
        config = load_config(args.config)
        collector = StreamCollector(output_dir=args.out)
        receiver = create_receiver(collector, port=args.port, config=config)
    except Exception as e:
        print(f"Error: {e}")
        return 1

    print(f"Tether receiver started on port {receiver.transport.address[1]}")
    print("Listening for incoming streams... (Press Ctrl+C to stop)")

    try:
        receiver.listen()
        return 0
    except KeyboardInterrupt:
        print("\nShutting down receiver...")
        return 0
    except Exception as e:
        print(f"Error: {e}")
        return 1
    finally:
        receiver.close()


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Tether: reliable byte streams over UDP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start receiver, saving each stream under ./received
  tether recv --port 5000 --out received

  # Send file
  tether send --to 127.0.0.1:5000 /tmp/hello.txt

  # Send with a larger window, debug logging
  tether --debug send --to 127.0.0.1:5000 /tmp/hello.txt --window-size 16
""",
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Configuration file path",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    send_parser = subparsers.add_parser("send", help="Send a file")
    send_parser.add_argument(
        "--to",
        required=True,
        help="Receiver address (format: host:port)",
    )
    send_parser.add_argument("file", help="File to send")
    send_parser.add_argument(
        "--window-size",
        type=int,
        help="Maximum unacknowledged frames (default: from config, 5)",
    )
    send_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the final acknowledgment (default: forever)",
    )

    recv_parser = subparsers.add_parser("recv", help="Start receiver")
    recv_parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (default: from config, 5000)",
    )
    recv_parser.add_argument(
        "--out",
        type=str,
        help="Directory to write received streams to",
    )

    args = parser.parse_args(argv)
    setup_logging(args.debug)

    if args.command == "send":
        return cmd_send(args)
    elif args.command == "recv":
        return cmd_recv(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
