#!/usr/bin/env python3
"""Command line entry point for running and poking the paymaster service"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from paymaster.config import Settings
from paymaster.core import codec
from paymaster.core.errors import SponsorshipError
from paymaster.core.signer import PaymasterSigner


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings from env/.env with command line overrides on top"""
    overrides: Dict[str, Any] = {}
    for option, field in (
        ("host", "host"),
        ("port", "port"),
        ("chain_id", "chain_id"),
        ("eth_rpc_url", "eth_rpc_url"),
        ("key_file", "signing_key_file"),
        ("entry_point", "entry_point_address"),
        ("log_level", "log_level"),
    ):
        value = getattr(args, option, None)
        if value is not None:
            overrides[field] = value

    listen = getattr(args, "rpc_server_addr", None)
    if listen:
        host, _, port = listen.rpartition(":")
        if not host or not port.isdigit():
            raise SystemExit(f"--rpc-server-addr must be host:port, got {listen!r}")
        overrides["host"] = host.strip("[]")
        overrides["port"] = int(port)
    return Settings(**overrides)


def format_timestamp(value: int) -> str:
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return "out of range"


def cli_serve(args: argparse.Namespace) -> None:
    import uvicorn

    from paymaster.main import create_app

    settings = settings_from_args(args)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


def cli_address(args: argparse.Namespace) -> None:
    signer = PaymasterSigner.from_settings(settings_from_args(args))
    print(signer.address)


def cli_decode(args: argparse.Namespace) -> None:
    decoded = codec.decode_hex(args.payload)
    print(f"Paymaster:   {decoded.paymaster_address}")
    print(f"validAfter:  {decoded.window.valid_after} ({format_timestamp(decoded.window.valid_after)})")
    print(f"validUntil:  {decoded.window.valid_until} ({format_timestamp(decoded.window.valid_until)})")
    print(f"Signature:   0x{decoded.signature.hex()}")


async def cli_sponsor(path: str, url: str, entry_point: Optional[str] = None) -> int:
    """Send a UserOperation JSON file to a running service and print the result."""
    user_op = json.loads(Path(path).read_text(encoding="utf-8"))
    params = [user_op] if entry_point is None else [user_op, entry_point]
    request = {"jsonrpc": "2.0", "id": 1, "method": "pm_sponsorUserOperation", "params": params}

    async with httpx.AsyncClient() as client:
        response = await client.post(url, json=request, timeout=30)
        response.raise_for_status()
        data = response.json()

    if "error" in data:
        error = data["error"]
        kind = (error.get("data") or {}).get("kind", "error")
        print(f"Rejected ({kind}, code {error.get('code')}): {error.get('message')}")
        return 1

    payload = data["result"]["paymasterAndData"]
    print(payload)
    decoded = codec.decode_hex(payload)
    print(f"Valid {format_timestamp(decoded.window.valid_after)} → {format_timestamp(decoded.window.valid_until)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Paymaster sponsorship CLI")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the JSON-RPC server")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")
    serve_parser.add_argument("--rpc-server-addr", help="Bind address as host:port (overrides --host/--port)")
    serve_parser.add_argument("--chain-id", type=int, help="Chain id bound into authorizations")
    serve_parser.add_argument("--eth-rpc-url", help="Chain JSON-RPC endpoint")
    serve_parser.add_argument("--key-file", help="File holding the signing key")
    serve_parser.add_argument("--entry-point", help="Supported EntryPoint address")
    serve_parser.add_argument("--log-level", help="Log level")

    address_parser = subparsers.add_parser("address", help="Print the signer address")
    address_parser.add_argument("--key-file", help="File holding the signing key")

    decode_parser = subparsers.add_parser("decode", help="Decode a paymasterAndData payload")
    decode_parser.add_argument("payload", help="0x-prefixed hex payload")

    sponsor_parser = subparsers.add_parser("sponsor", help="Request sponsorship from a running service")
    sponsor_parser.add_argument("file", help="Path to a UserOperation JSON file")
    sponsor_parser.add_argument("--url", default="http://127.0.0.1:8545/rpc", help="Service RPC URL")
    sponsor_parser.add_argument("--entry-point", help="EntryPoint address to send along")

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command == "serve":
            cli_serve(args)
        elif args.command == "address":
            cli_address(args)
        elif args.command == "decode":
            cli_decode(args)
        elif args.command == "sponsor":
            return asyncio.run(cli_sponsor(args.file, args.url, args.entry_point))
    except SponsorshipError as e:
        print(f"❌ {e.kind.value}: {e.reason}", file=sys.stderr)
        return 1
    except httpx.HTTPError as e:
        print(f"❌ Request failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
