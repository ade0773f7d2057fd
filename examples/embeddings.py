#!/usr/bin/env python3
"""
Embeddings example using the Venice AI Python SDK.
"""

import math

from veniceai import Venice


def cosine(a, b):
    dot = sum(x * y for x, y in zip(a, b))
    return dot / (math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b)))


def main():
    client = Venice()

    print("Embeddings Example")
    print("=" * 50)

    texts = [
        "The cat sat on the mat.",
        "A feline rested on the rug.",
        "Quarterly revenue grew by four percent.",
    ]
    response = client.embeddings.create(input=texts)

    vectors = [item.embedding for item in response.data]
    print(f"Model: {response.model}")
    print(f"Dimensions: {len(vectors[0])}")
    print(f"\nSimilarity 0-1: {cosine(vectors[0], vectors[1]):.3f}")
    print(f"Similarity 0-2: {cosine(vectors[0], vectors[2]):.3f}")

    client.close()


if __name__ == "__main__":
    main()
