"""
Services for the net worth API and its rate limiter.

- rate_limiter: the limiter engine (fail open) over a pluggable window store
- sqlite_window_store / kv_window_store: window store backends
- health_monitor: incidents, recovery probes and the force-fallback flag
- item_service: assets, debts and net worth snapshots
"""
