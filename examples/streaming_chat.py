#!/usr/bin/env python3
"""
Streaming chat example using the Venice AI Python SDK.

Demonstrates SSE streaming and cancelling a stream part way through.
"""

import threading

from veniceai import CancellationToken, Venice, VeniceCancelledError


def main():
    client = Venice()

    print("Streaming Chat Example")
    print("=" * 50)
    print("Question: Tell me a short story about a robot.\n")
    print("Response: ", end="", flush=True)

    stream = client.chat.completions.create(
        model="llama-3.3-70b",
        messages=[
            {"role": "user", "content": "Tell me a short story about a robot."}
        ],
        stream=True,
        max_tokens=200
    )

    with stream:
        for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                print(chunk.choices[0].delta.content, end="", flush=True)

    print("\n")

    # Stop a long answer after two seconds
    token = CancellationToken()
    threading.Timer(2.0, token.cancel).start()
    stream = client.chat.completions.create(
        model="llama-3.3-70b",
        messages=[{"role": "user", "content": "Write a very long poem about the sea."}],
        stream=True,
        cancel=token,
    )
    try:
        for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                print(chunk.choices[0].delta.content, end="", flush=True)
    except VeniceCancelledError:
        print("\n[cancelled]")

    client.close()


if __name__ == "__main__":
    main()
