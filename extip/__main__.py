from __future__ import annotations
import argparse
import json
import logging
import sys
from dataclasses import asdict, replace

from .config import ConfigError, ExtipConfig, load_settings
from .datasource import read


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Resolve this host's external IP address")
    p.add_argument("--env", dest="env_path", help="Path to .env file", default=None)
    p.add_argument("--resolver", dest="resolver", help="Resolver URL (default https://checkip.amazonaws.com/)")
    p.add_argument("--timeout", dest="client_timeout", type=int, help="Client timeout in ms, 0 for none (default 1000)")
    p.add_argument("--validate-ip", dest="validate_ip", action="store_true", help="Fail unless the response is an IP address")
    p.add_argument("--no-validate-ip", dest="validate_ip", action="store_false", help="Accept any response body")
    p.set_defaults(validate_ip=None)
    p.add_argument("--json", dest="as_json", action="store_true", help="Print ipaddress and id as JSON")
    p.add_argument("--verbose", action="store_true", help="Verbose output")
    return p


def _apply_overrides(config: ExtipConfig, args: argparse.Namespace) -> ExtipConfig:
    return replace(
        config,
        resolver=config.resolver if args.resolver is None else args.resolver,
        client_timeout=config.client_timeout if args.client_timeout is None else args.client_timeout,
        validate_ip=config.validate_ip if args.validate_ip is None else args.validate_ip,
    ).validate()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _apply_overrides(load_settings(args.env_path), args)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    try:
        state = read(config)
    except KeyboardInterrupt:
        if args.verbose:
            print("Interrupted")
        return 130
    except Exception as e:  # top-level runtime error
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.as_json:
        print(json.dumps(asdict(state)))
    else:
        print(state.ipaddress)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
