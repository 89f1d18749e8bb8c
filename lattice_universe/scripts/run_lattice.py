#!/usr/bin/env python3
"""
Lattice runner: compute one request from a JSON file, or serve JSON lines.

The request file may hold either a bare payload or a full compute message
({"type": "compute", "requestId": ..., "payload": {...}}).

Usage:
    python run_lattice.py --request request.json --output result.json
    python run_lattice.py --serve < requests.jsonl > responses.jsonl
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path to import lattice_core
sys.path.insert(0, str(Path(__file__).parent.parent))

from lattice_worker.logs import setup_logger
from lattice_worker.worker import handle_message, serve


def load_request(path: Path) -> dict:
    """Read a request file and wrap a bare payload into a compute message."""
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict) and data.get("type") == "compute":
        return data
    return {"type": "compute", "requestId": path.stem, "payload": data}


def main():
    parser = argparse.ArgumentParser(
        description="Lattice expansion kernel runner"
    )
    parser.add_argument(
        "--request",
        type=Path,
        default=None,
        help="JSON request file (payload or compute message)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the response here instead of stdout",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Serve JSON-lines compute messages on stdin/stdout",
    )
    parser.add_argument(
        "--log-file", type=Path, default=None, help="Optional log file"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log per-generation progress"
    )
    args = parser.parse_args()

    logger = setup_logger(
        "", args.log_file, level=logging.DEBUG if args.verbose else logging.INFO
    )

    if args.serve:
        count = serve(sys.stdin, sys.stdout)
        logger.info(f"Served {count} responses")
        return 0

    if args.request is None:
        parser.error("--request is required unless --serve is given")

    response = handle_message(load_request(args.request))
    text = json.dumps(response, indent=2, default=repr)
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text + "\n")
        logger.info(f"Response written to {args.output}")
    else:
        print(text)

    return 0 if response["type"] == "result" else 1


if __name__ == "__main__":
    sys.exit(main())
