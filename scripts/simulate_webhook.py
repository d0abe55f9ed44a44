#!/usr/bin/env python3
"""Simulate a Mural deposit webhook for an order (no real USDC needed).

Usage:
    python scripts/simulate_webhook.py <order_id> [--base-url http://localhost:8000]

Looks the order up, then posts a ``deposit.completed`` event carrying the
order's unique amount to the storefront's webhook endpoint.
"""
import argparse
import sys
import uuid

import httpx


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("order_id")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--event-type", default="deposit.completed")
    args = parser.parse_args()

    try:
        r = httpx.get(f"{args.base_url}/api/orders/{args.order_id}", timeout=5.0)
    except httpx.HTTPError as e:
        print(f"Storefront unavailable: {e}")
        return 1
    if r.status_code != 200:
        print(f"Order lookup returned {r.status_code}: {r.text}")
        return 1
    order = r.json()

    event = {
        "id": f"evt_{uuid.uuid4().hex[:12]}",
        "eventType": args.event_type,
        "payload": {
            "amount": f"{order['uniqueAmount']:.6f}",
            "tokenSymbol": "USDC",
            "transactionHash": f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}",
        },
    }
    print(f"Sending {event['payload']['amount']} USDC for order {order['id']}")
    r = httpx.post(f"{args.base_url}/api/webhooks/mural", json=event, timeout=30.0)
    print("Status:", r.status_code)
    print(r.text)
    return 0 if r.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
