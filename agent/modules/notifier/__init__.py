"""Outbound notification delivery: queue, batching, retries and rate limiting."""
