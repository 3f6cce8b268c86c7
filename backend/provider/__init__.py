"""
Resilient access to the upstream sports-data provider.
Rate limiting per endpoint, a shared circuit breaker, bounded retry with
backoff, and decoding of the provider's loosely shaped payloads.
"""
