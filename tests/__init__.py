"""
ClickHouse sync test suite.

This package contains:
- unit/: Unit tests (no external dependencies; HTTP and PostgreSQL are faked)
- integration/: Integration tests (in-memory stores, full reconciliation and
  service lifecycle)
"""
