#!/usr/bin/env python3
"""
Basic chat example using the Venice AI Python SDK.

Reads the API key from VENICE_API_KEY.
"""

from veniceai import Venice


def main():
    client = Venice()

    print("Basic Chat Example")
    print("=" * 50)

    response = client.chat.completions.create(
        model="llama-3.3-70b",
        messages=[
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "What is machine learning in one sentence?"}
        ],
        temperature=0.7,
        max_tokens=100
    )

    print(f"Response: {response.choices[0].message.content}")
    print(f"\nTokens used: {response.usage.total_tokens if response.usage else 'N/A'}")

    # Feature suffixes become venice_parameters
    response = client.chat.completions.create(
        model="llama-3.3-70b:enable_web_search=on",
        messages=[{"role": "user", "content": "What happened in tech news today?"}],
    )
    print(f"\nWith web search: {response.choices[0].message.content}")

    client.close()


if __name__ == "__main__":
    main()
