"""CLI entry point for beacon."""

import argparse
import json
import sys
import time

from .announce import discover_all
from .bus import InMemoryBus, NatsBus
from .client import MonitoringClient
from .config import ComponentConfig, load_config, merge_cli_args
from .errors import BeaconError
from .registrar import Registrar


def _add_serve_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument("--type", type=str, help="Component type to register as")
    parser.add_argument("--index", type=int, help="Instance index (default: 0)")
    parser.add_argument(
        "--port", type=int,
        help="Port for the /varz and /healthz endpoint (default: ephemeral)",
    )
    parser.add_argument(
        "--host", type=str,
        help="Address to advertise in announcements (default: address of the default route)",
    )
    parser.add_argument("--bind", type=str, help="Address to listen on (default: 0.0.0.0)")
    parser.add_argument("--user", type=str, help="Basic-auth user (default: generated)")
    parser.add_argument("--password", type=str, help="Basic-auth password (default: generated)")
    parser.add_argument(
        "--nats-url", type=str, dest="nats_url",
        help="NATS server to register on (default: in-process bus, not discoverable)",
    )
    parser.add_argument(
        "--varz-interval", type=float, dest="varz_interval",
        help="Seconds to cache CPU/memory samples (default: 1.0)",
    )


def _add_client_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("host", type=str, help="Component endpoint as HOST:PORT")
    parser.add_argument("--user", type=str, required=True, help="Basic-auth user")
    parser.add_argument("--password", type=str, required=True, help="Basic-auth password")
    parser.add_argument("--timeout", type=float, default=10, help="Request timeout in seconds")


def _build_config(args) -> ComponentConfig:
    """Build a ComponentConfig from a config file + CLI overrides."""
    if args.config:
        config = load_config(args.config)
    else:
        config = ComponentConfig()
    merge_cli_args(config, args)
    config.validate(require_bus=False)
    return config


def cmd_serve(args) -> None:
    """Register a component and serve until interrupted."""
    config = _build_config(args)

    if config.nats_url:
        bus = NatsBus.connect(config.nats_url)
    else:
        print("No --nats-url given; using an in-process bus.", file=sys.stderr)
        bus = InMemoryBus()
    config.bus = bus

    registrar = Registrar()
    try:
        payload = registrar.register(config)
        print(json.dumps(payload, indent=2))
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("Shutting down.", file=sys.stderr)
    finally:
        registrar.shutdown()
        if isinstance(bus, NatsBus):
            bus.close()


def cmd_varz(args) -> None:
    client = MonitoringClient(args.host, (args.user, args.password), timeout=args.timeout)
    varz = client.get_varz()
    if varz is None:
        print(f"Error: could not fetch varz from {args.host}.", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(varz, indent=2, ensure_ascii=False))


def cmd_healthz(args) -> None:
    client = MonitoringClient(args.host, (args.user, args.password), timeout=args.timeout)
    healthz = client.get_healthz()
    if healthz is None:
        print(f"Error: could not fetch healthz from {args.host}.", file=sys.stderr)
        sys.exit(1)
    sys.stdout.write(healthz)


def cmd_discover(args) -> None:
    """Broadcast a discovery request and print every reply."""
    bus = NatsBus.connect(args.nats_url)
    try:
        replies = discover_all(bus, timeout=args.timeout, subject_prefix=args.subject_prefix)
    finally:
        bus.close()
    if args.format == "json":
        print(json.dumps(replies, indent=2, ensure_ascii=False))
        return
    if not replies:
        print("(no components)")
    for r in replies:
        print(f"{r.get('type')}  index={r.get('index')}  {r.get('host')}  uuid={r.get('uuid')}  uptime={r.get('uptime')}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="beacon",
        description="Beacon: component registration, discovery and varz/healthz",
    )
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Register a component and serve varz/healthz")
    _add_serve_args(serve_parser)
    serve_parser.set_defaults(func=cmd_serve)

    # varz
    varz_parser = subparsers.add_parser("varz", help="Fetch /varz from a component")
    _add_client_args(varz_parser)
    varz_parser.set_defaults(func=cmd_varz)

    # healthz
    healthz_parser = subparsers.add_parser("healthz", help="Fetch /healthz from a component")
    _add_client_args(healthz_parser)
    healthz_parser.set_defaults(func=cmd_healthz)

    # discover
    discover_parser = subparsers.add_parser("discover", help="List components answering discovery")
    discover_parser.add_argument("--nats-url", type=str, dest="nats_url", required=True, help="NATS server URL")
    discover_parser.add_argument("--timeout", type=float, default=1.0, help="Seconds to collect replies (default: 1.0)")
    discover_parser.add_argument(
        "--subject-prefix", type=str, dest="subject_prefix", default="vcap.component",
        help="Subject prefix (default: vcap.component)",
    )
    discover_parser.add_argument(
        "--format", choices=["text", "json"], default="text",
        help="Output format (default: text)",
    )
    discover_parser.set_defaults(func=cmd_discover)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BeaconError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
