"""Counter store adapters.

This package provides a small abstraction over the shared counter store so the
limiters can run against Redis in production and an in-process store in tests,
without changing the limiter code.
"""
