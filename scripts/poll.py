#!/usr/bin/env python3
"""Trigger one reconciliation poll; meant to be run from cron.

    */1 * * * * python /srv/storefront/scripts/poll.py --base-url http://localhost:8000
"""
import argparse
import sys

import httpx


def main() -> int:
    parser = argparse.ArgumentParser(description="Trigger one reconciliation poll")
    parser.add_argument("--base-url", default="http://localhost:8000")
    args = parser.parse_args()

    try:
        r = httpx.post(f"{args.base_url}/api/poll", timeout=60.0)
    except httpx.HTTPError as e:
        print(f"Poll request failed: {e}")
        return 1
    print("Status:", r.status_code)
    print(r.text)
    return 0 if r.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
