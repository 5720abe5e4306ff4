#!/usr/bin/env python3
"""
Print payment code payloads for a vendor.

Handy for producing QR payloads to feed the scan_payment_code tool while
testing against a local backend.
"""

import argparse
import sys

from relief_spend_mcp.core.codec import PaymentCodeIssuer


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate relief payment code payloads")
    parser.add_argument("vendor_id", help="Vendor identifier to embed")
    parser.add_argument(
        "--count", "-n", type=int, default=1, help="Number of payloads to print"
    )
    args = parser.parse_args()

    if not args.vendor_id.strip():
        print("Error: vendor_id must not be empty", file=sys.stderr)
        return 1

    issuer = PaymentCodeIssuer()
    for _ in range(args.count):
        print(issuer.issue(args.vendor_id))
    return 0


if __name__ == "__main__":
    sys.exit(main())
