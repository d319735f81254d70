"""
Local helper: runs a background-removal session over image files and writes
RGBA PNG cutouts next to each other in an output directory. Bypasses the
HTTP layer.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bgremover.catalog import MODELS
from bgremover.config import get_settings
from bgremover.jobs import JobStatus
from bgremover.session import BackgroundRemovalSession
from bgremover.torch_engine import TorchInferenceEngine


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove backgrounds from local images")
    parser.add_argument("inputs", nargs="+", help="Paths to input images")
    parser.add_argument("--output-dir", required=True, help="Directory to write RGBA PNGs into")
    parser.add_argument("--model", choices=sorted(MODELS), help="Model to switch to after startup")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    session = BackgroundRemovalSession(TorchInferenceEngine(settings), settings=settings)
    try:
        if not await session.start():
            reason = session.error.message if session.error else f"redirected to {session.redirect_url}"
            print(f"Could not start: {reason}", file=sys.stderr)
            return 1
        if args.model:
            await session.switch_model(args.model)
            if session.error:
                print(f"Model switch failed: {session.error.message}", file=sys.stderr)
                return 1
        print(f"Using model {session.lifecycle.active_model_id}")

        paths = [Path(p) for p in args.inputs]
        for path in paths:
            if not path.exists():
                raise FileNotFoundError(f"Input file not found: {path}")
        jobs = session.submit([(path.name, path.read_bytes()) for path in paths])
        await session.queue.drain()

        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        failures = 0
        for job in jobs:
            done = session.get_job(job.id)
            if done is None or done.status is not JobStatus.DONE:
                print(f"Failed: {job.filename}", file=sys.stderr)
                failures += 1
                continue
            out_path = output_dir / f"{Path(job.filename).stem}.png"
            out_path.write_bytes(done.processed_file)
            print(f"Wrote RGBA output to {out_path}")
        return 1 if failures else 0
    finally:
        await session.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
