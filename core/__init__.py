"""
Core Package

Contains the exchange-agnostic core logic including:
- QuoteSource: Abstract base class every exchange adapter implements
- SourceManager: Registry and settle-all fan-out over the adapters
- Aggregator: Cross-source verification (mean mid, median discrepancy, VWAP)
- Schemas: Pydantic models for quotes, snapshots, history and wire payloads
- Errors, BackoffPolicy, configuration and logging shared by server and client

The same aggregation code runs in the server and in the client's direct tier.
"""
