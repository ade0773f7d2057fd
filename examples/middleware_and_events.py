#!/usr/bin/env python3
"""
Middleware, lifecycle events and admission control with the Venice AI
Python SDK.
"""

import logging

from veniceai import (
    EventType,
    LogLevel,
    LoggingMiddleware,
    Middleware,
    RequestIdMiddleware,
    RetryHeaderMiddleware,
    TimingMiddleware,
    Venice,
    VeniceError,
)


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")

    client = Venice(
        max_concurrent=2,
        requests_per_minute=20,
        max_retries=2,
        log_level=LogLevel.INFO,
        middleware=[RequestIdMiddleware(), TimingMiddleware(), RetryHeaderMiddleware()],
    )
    client.use(LoggingMiddleware())

    def tag_tenant(ctx):
        ctx.headers["X-Tenant"] = "examples"

    client.use(Middleware(name="tenant", on_request=tag_tenant))

    def on_response(event):
        rate_limit = event.data.get("rate_limit")
        if rate_limit is not None:
            print(f"[{event.operation}] remaining requests: {rate_limit.remaining_requests}")

    client.on(EventType.RESPONSE, on_response)

    try:
        response = client.chat.completions.create(
            model="llama-3.3-70b",
            messages=[{"role": "user", "content": "Say hello."}],
        )
        print(response.choices[0].message.content)
    except VeniceError as e:
        print(f"Request failed: {e} (kind={e.kind.value}, attempts={e.attempts})")

    client.close()


if __name__ == "__main__":
    main()
