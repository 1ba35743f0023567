#!/usr/bin/env python3
"""
Drain Queue — run the follow-event job once from the command line.

Usage:
    python scripts/drain_queue.py                          # one batch, default size
    python scripts/drain_queue.py --batch-size 50          # bigger batch
    python scripts/drain_queue.py --enqueue follow A B     # push an event instead
    python scripts/drain_queue.py --config ./prod.yaml     # alternate settings file
"""
import argparse
import asyncio
import json
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def positive_int(value: str) -> int:
    """argparse type: an integer of at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


async def run(args) -> int:
    from dotenv import load_dotenv
    load_dotenv()

    from config.settings import load_settings
    from job_queue.message_queue import QueueError
    from job_queue.worker import build_worker
    from models.schemas import FollowEvent

    settings = load_settings(args.config)
    worker = build_worker(settings)

    try:
        if args.enqueue:
            action, follower_id, following_id = args.enqueue
            event = FollowEvent(action=action, follower_id=follower_id, following_id=following_id)
            try:
                message_id = await worker.queue.send(settings.queue.name, event.to_payload())
            except QueueError as e:
                print(json.dumps({"success": False, "error": str(e)}))
                return 1
            print(json.dumps({"status": "enqueued", "message_id": message_id}))
            return 0

        report = await worker.processor.drain(args.batch_size)
        output = report.to_response()
        if args.detailed:
            output["stats"] = report.stats()
            output["results"] = [r.model_dump(mode="json") for r in report.results]
        print(json.dumps(output, indent=2 if args.detailed else None))
        return 0
    finally:
        await worker.close()


def main():
    parser = argparse.ArgumentParser(description="Drain the profile_events queue once")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--batch-size", type=positive_int, default=None, help="Messages to pop (default from settings)")
    parser.add_argument("--detailed", action="store_true", help="Print per-message results")
    parser.add_argument("--enqueue", nargs=3, metavar=("ACTION", "FOLLOWER_ID", "FOLLOWING_ID"),
                        help="Send a follow/unfollow event instead of draining")
    args = parser.parse_args()

    if args.enqueue and args.enqueue[0] not in ("follow", "unfollow"):
        parser.error("ACTION must be 'follow' or 'unfollow'")

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
