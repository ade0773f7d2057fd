#!/usr/bin/env python3
"""
Async chat example using the Venice AI Python SDK.

Demonstrates async/await usage and concurrent calls sharing one client.
"""

import asyncio

from veniceai import AsyncVenice


async def main():
    async with AsyncVenice(max_concurrent=2) as client:
        print("Async Chat Example")
        print("=" * 50)

        print("\n1. Async chat completion:")
        response = await client.chat.completions.create(
            model="llama-3.3-70b",
            messages=[
                {"role": "user", "content": "What is Python?"}
            ]
        )
        print(f"Response: {response.choices[0].message.content}")

        print("\n2. Async streaming:")
        print("Question: Count to 5\n")
        print("Response: ", end="", flush=True)

        stream = await client.chat.completions.create(
            model="llama-3.3-70b",
            messages=[
                {"role": "user", "content": "Count to 5"}
            ],
            stream=True
        )

        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                print(chunk.choices[0].delta.content, end="", flush=True)

        print("\n")

        # At most two of these are in flight at once
        print("3. Concurrent requests:")
        questions = ["What is Rust?", "What is Go?", "What is Zig?", "What is Nim?"]
        answers = await asyncio.gather(*[
            client.chat.completions.create(
                model="llama-3.3-70b",
                messages=[{"role": "user", "content": q}],
                max_tokens=40,
            )
            for q in questions
        ])
        for question, answer in zip(questions, answers):
            print(f"  {question} {answer.choices[0].message.content}")


if __name__ == "__main__":
    asyncio.run(main())
