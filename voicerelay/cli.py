"""
voicerelay command line

    voicerelay serve [-c CONFIG] [-H HOST] [-p PORT] [-v]
    voicerelay config generate|validate|show
    voicerelay chat [--url URL] [--user-id ID]
"""

import argparse
import asyncio
import json
import logging
import sys

from voicerelay import __version__
from voicerelay.client import RelayClient
from voicerelay.relay.server import build_server
from voicerelay.utils.config import get_default_config_yaml, load_config
from voicerelay.utils.errors import ConfigError
from voicerelay.utils.logger import setup_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="VoiceRelay voice assistant relay", prog="voicerelay")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    # Server
    serve_parser = subparsers.add_parser("serve", help="Run the relay server")
    serve_parser.add_argument("-c", "--config", help="Config file path")
    serve_parser.add_argument("-H", "--host", help="Host to bind")
    serve_parser.add_argument("-p", "--port", type=int, help="Port to bind")
    serve_parser.add_argument("-v", "--verbose", action="store_true")

    # Config management
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_sub = config_parser.add_subparsers(dest="config_command")

    gen_parser = config_sub.add_parser("generate", help="Generate default config")
    gen_parser.add_argument("-o", "--output", default="voicerelay.yaml")

    val_parser = config_sub.add_parser("validate", help="Validate config")
    val_parser.add_argument("-c", "--config", help="Config file path")

    show_parser = config_sub.add_parser("show", help="Show loaded config")
    show_parser.add_argument("-c", "--config", help="Config file path")

    # Text client
    chat_parser = subparsers.add_parser("chat", help="Interactive text client")
    chat_parser.add_argument("--url", default="ws://127.0.0.1:3001")
    chat_parser.add_argument("--user-id", help="Override the persisted user id")

    return parser


def _serve(args) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"✗ Configuration error: {e}")
        return 1

    if args.host:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    setup_logging(level, interminal=True, logs_directory=config.logs_directory)

    server = build_server(config)
    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        pass
    return 0


def _config(args) -> int:
    if args.config_command == "generate":
        with open(args.output, "w") as f:
            f.write(get_default_config_yaml())
        print(f"Generated config: {args.output}")
        return 0

    if args.config_command == "validate":
        try:
            config = load_config(args.config)
        except ConfigError as e:
            print(f"✗ Configuration error: {e}")
            return 1
        print("✓ Configuration valid")
        print(f"  Environment: {config.environment}")
        print(f"  Listen: {config.server.host}:{config.server.port}")
        print(f"  Workspace root: {config.workspace.root}")
        for missing in config.missing_api_keys():
            print(f"  ! missing {missing}")
        return 0

    if args.config_command == "show":
        try:
            config = load_config(args.config)
        except ConfigError as e:
            print(f"✗ Configuration error: {e}")
            return 1
        print(json.dumps(config.to_dict(), indent=2, default=str))
        return 0

    return 2


def _print_event(event):
    if event.type == "tts_audio":
        print(f"[audio {len(event.get_audio_bytes() or b'')} bytes]")
    elif event.type == "file_content":
        data = event.data or {}
        if data.get("error"):
            print(f"[file {data.get('fileName')}] {data['error']}")
        else:
            print(f"--- {data.get('fileName')} ---\n{data.get('content')}")
    elif event.content:
        print(f"[{event.type}] {event.content}")
    else:
        print(f"[{event.type}]")


async def _chat(args) -> int:
    async with RelayClient(args.url, user_id=args.user_id) as client:
        print(f"Connected as {client.user_id}. /file NAME, /interrupt, /quit")

        async def printer():
            async for event in client.events():
                _print_event(event)

        printer_task = asyncio.create_task(printer())
        try:
            while True:
                try:
                    line = (await asyncio.to_thread(input, "> ")).strip()
                except EOFError:
                    break
                if not line:
                    continue
                if line in ("/quit", "/exit"):
                    break
                try:
                    if line.startswith("/file "):
                        await client.fetch_file(line[len("/file "):].strip())
                    elif line == "/interrupt":
                        await client.interrupt()
                    else:
                        await client.send_message(line)
                except ConnectionError:
                    print("Not connected, retrying in the background")
        finally:
            printer_task.cancel()
    return 0


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return _serve(args)
    if args.command == "config":
        code = _config(args)
        if code == 2:
            print("usage: voicerelay config {generate,validate,show}")
        return code
    if args.command == "chat":
        try:
            return asyncio.run(_chat(args))
        except KeyboardInterrupt:
            return 0
        except TimeoutError:
            print(f"Could not connect to {args.url}")
            return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
