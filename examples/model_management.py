#!/usr/bin/env python3
"""
Model and account example using the Venice AI Python SDK.

Listing API keys and rate limits requires an admin key.
"""

from veniceai import Venice, VenicePermissionError


def main():
    client = Venice()

    print("Model Management Example")
    print("=" * 50)

    print("\n1. Text models:")
    for model in client.models.list(type="text").data:
        print(f"  - {model.id}")

    print("\n2. Traits:")
    for trait, model_id in client.models.traits().data.items():
        print(f"  {trait}: {model_id}")

    print("\n3. Image styles:")
    print("  " + ", ".join(client.images.styles().data[:10]))

    print("\n4. Rate limits:")
    try:
        limits = client.api_keys.rate_limits()
        print(f"  {limits.data}")
    except VenicePermissionError:
        print("  (admin key required)")

    client.close()


if __name__ == "__main__":
    main()
