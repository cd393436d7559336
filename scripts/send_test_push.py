#!/usr/bin/env python3
"""
Send a test notification through a running service.

    python scripts/send_test_push.py --title "Test" --body "Hello" --user u1
"""

import argparse
import json
import sys

import httpx


def main() -> int:
    parser = argparse.ArgumentParser(description="Send a test push notification")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--title", default="SPC Alerts test")
    parser.add_argument("--body", default="This is a test notification")
    parser.add_argument("--url", default=None)
    parser.add_argument("--urgent", action="store_true", help="send with high urgency")
    parser.add_argument("--user", action="append", dest="user_ids",
                        help="target user id (repeatable); omit to broadcast")
    args = parser.parse_args()

    payload = {"title": args.title, "body": args.body}
    if args.url:
        payload["url"] = args.url
    if args.urgent:
        payload["urgency"] = "high"
    if args.user_ids:
        payload["user_ids"] = args.user_ids

    try:
        response = httpx.post(f"{args.base_url.rstrip('/')}/send-push", json=payload, timeout=60.0)
    except httpx.RequestError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1

    print(f"HTTP {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)
    return 0 if response.is_success else 1


if __name__ == "__main__":
    sys.exit(main())
