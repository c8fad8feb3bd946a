# CipherTalk: Command Line Entry Point
#
#   ciphertalk relay [--host H] [--port P]      run the development relay
#   ciphertalk keys IDENTITY                    create/load keys, print fingerprint
#   ciphertalk send IDENTITY PEER TEXT...       send one private message
#   ciphertalk public IDENTITY TEXT...          send one public message
#   ciphertalk listen IDENTITY                  print history and live messages

import argparse
import asyncio
import sys

from . import __version__
from .core import CipherTalkError, Settings, configure_logging


def _print_entry(entry) -> None:
    marker = "" if entry.readable else " (!)"
    print(f"[{entry.envelope.timestamp or '-'}] {entry.sender} -> "
          f"{entry.envelope.to_identity}: {entry.text}{marker}")


def _print_public(message) -> None:
    print(f"[{message.timestamp or '-'}] {message.username} (public): {message.text}")


async def _open_session(settings: Settings, identity: str):
    from .chat import ChatSession, WebSocketTransport
    from .e2e import KeyStore

    transport = await WebSocketTransport.connect(settings.relay_url)
    session = ChatSession(
        identity,
        transport,
        KeyStore(str(settings.key_db_path)),
        directory_timeout=settings.directory_timeout,
    )
    await session.start()
    return session


async def _send(settings: Settings, identity: str, peer: str, text: str) -> None:
    session = await _open_session(settings, identity)
    try:
        await session.send_private(peer, text)
        print(f"Sent encrypted message to {peer}")
    finally:
        await session.close()


async def _send_public(settings: Settings, identity: str, text: str) -> None:
    session = await _open_session(settings, identity)
    try:
        await session.send_public(text)
        print("Sent public message")
    finally:
        await session.close()


async def _listen(settings: Settings, identity: str) -> None:
    session = await _open_session(settings, identity)
    session.subscribe("private_history", lambda entries: [_print_entry(e) for e in entries])
    session.subscribe("public_history", lambda messages: [_print_public(m) for m in messages])
    session.subscribe("private", _print_entry)
    session.subscribe("public", _print_public)
    try:
        await session.wait_closed()
    finally:
        await session.close()


def _keys(settings: Settings, identity: str) -> None:
    from .e2e import KeyStore, export_public_key, fingerprint

    pair = KeyStore(str(settings.key_db_path)).ensure_key_pair(identity)
    print(f"Identity:    {identity}")
    print(f"Fingerprint: {fingerprint(pair.public_key)}")
    print(f"Public key:  {export_public_key(pair.public_key)}")


def main():
    """Main entry point for ciphertalk."""
    parser = argparse.ArgumentParser(
        prog="ciphertalk",
        description="End-to-end encrypted chat client and development relay",
    )
    parser.add_argument(
        "--version", action="version", version=f"ciphertalk v{__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    relay = sub.add_parser("relay", help="Run the development relay server")
    relay.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    relay.add_argument("--port", type=int, default=8765, help="Bind port (default: 8765)")

    keys = sub.add_parser("keys", help="Create or load an identity's key pair")
    keys.add_argument("identity")

    send = sub.add_parser("send", help="Send one encrypted private message")
    send.add_argument("identity")
    send.add_argument("peer")
    send.add_argument("text", nargs="+")

    public = sub.add_parser("public", help="Send one public message")
    public.add_argument("identity")
    public.add_argument("text", nargs="+")

    listen = sub.add_parser("listen", help="Print conversation history and live messages")
    listen.add_argument("identity")

    args = parser.parse_args()
    settings = Settings.from_env()
    configure_logging(level=settings.log_level, json=settings.log_json)

    try:
        if args.command == "relay":
            from .relay import start_relay_server

            start_relay_server(host=args.host, port=args.port, log_level=settings.log_level)
        elif args.command == "keys":
            _keys(settings, args.identity)
        elif args.command == "send":
            asyncio.run(_send(settings, args.identity, args.peer, " ".join(args.text)))
        elif args.command == "public":
            asyncio.run(_send_public(settings, args.identity, " ".join(args.text)))
        elif args.command == "listen":
            asyncio.run(_listen(settings, args.identity))
    except KeyboardInterrupt:
        print("\nShutting down...")
    except (CipherTalkError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
