"""
Prints the signature for a set of fields, for building requests by hand.

Usage:
    python scripts/generate_signature.py --secret SECRET amount=100.00 currency=HKD ...

With no fields, signs the sample payment and query requests.
"""
import argparse
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import settings
from app.services.signature import canonical_query, sign

SAMPLE_PAYMENT = {
    "amount": "100.00",
    "currency": "HKD",
    "customer_address": "1, Bay Street",
    "customer_country": "US",
    "customer_email": "someone@gmail.com",
    "customer_first_name": "John",
    "customer_ip": "123.123.123.123",
    "customer_last_name": "Doe",
    "customer_phone": "0123123123",
    "customer_postal_code": "10001",
    "customer_state": "NY",
    "merchant_reference": "1234567890",
    "network": "Alipay",
    "notify_url": "https://demo.shop.com/payment/notify",
    "return_url": "https://demo.shop.com/payment/return",
    "subject": "IphoneX",
}

SAMPLE_QUERY = {"merchant_reference": "1234567890"}


def parse_fields(pairs):
    fields = {}
    for pair in pairs:
        if "=" not in pair:
            raise SystemExit(f"Expected key=value, got {pair!r}")
        key, value = pair.split("=", 1)
        fields[key] = value
    return fields


def show(title, fields, secret):
    print(title)
    print("Fields:", json.dumps(fields, indent=2))
    print("Canonical:", canonical_query(fields))
    print("Signature:", sign(fields, secret))
    print()


def main():
    parser = argparse.ArgumentParser(description="Generate SHA-512 request signatures")
    parser.add_argument("--secret", default=settings.default_merchant.secret)
    parser.add_argument("fields", nargs="*", help="key=value pairs")
    args = parser.parse_args()

    if args.fields:
        show("Custom fields:", parse_fields(args.fields), args.secret)
        return

    show("1. Payment request:", SAMPLE_PAYMENT, args.secret)
    show("2. Query request:", SAMPLE_QUERY, args.secret)


if __name__ == "__main__":
    main()
