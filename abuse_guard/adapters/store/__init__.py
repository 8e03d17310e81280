"""Counting store adapters.

The rate limiter depends only on the ``AbstractCountingStore`` interface so
the single-process in-memory store and Redis are interchangeable.
"""
