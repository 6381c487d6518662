"""Request a single fragment from the command line."""
from __future__ import annotations
import argparse
import asyncio
import logging
import sys

from moirai_archivist.client.fragment_client import FragmentClient
from moirai_archivist.common.config import ClientConfig
from moirai_archivist.common.errors import ArchivistError
from moirai_archivist.common.logging_setup import setup_logging
from moirai_archivist.common.schema import CausalForce

LOGGER = logging.getLogger("moirai.cli")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Request a narrative fragment from the Archivist service")
    ap.add_argument("--tier", type=int, required=True, help="Difficulty tier (>= 1)")
    ap.add_argument(
        "--tag",
        required=True,
        choices=[t.value for t in CausalForce],
        type=str.upper,
        help="Causal force to embed",
    )
    ap.add_argument("--genre", default=None, help="Narrative setting, e.g. Noir")
    ap.add_argument("--config", default=None, help="YAML config path (defaults to environment)")
    ap.add_argument("--deadline", type=float, default=None, help="Give up after this many seconds")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log retries and attempts")
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = ClientConfig.from_yaml(args.config) if args.config else ClientConfig.from_env()
        client = FragmentClient(config)
        result = asyncio.run(
            client.request_fragment(args.tier, args.tag, args.genre, args.deadline)
        )
    except ArchivistError as e:
        LOGGER.error("%s: %s", type(e).__name__, e.message)
        return 1

    print(result.fragment_text)
    print()
    print(f"Revelation ({args.tag}): {result.revelation_text}")
    return 0

if __name__ == "__main__":
    sys.exit(main())
