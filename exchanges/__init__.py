"""
Exchange Connectors Package

This package contains individual exchange connector modules.
Each exchange (Binance, Coinbase, Kraken) has its own subfolder with:
- api_client.py: REST API logic on top of the shared aiohttp RestClient
- __init__.py: The QuoteSource adapter normalizing responses into Quote

Adding an exchange means adding a subfolder and registering it in SourceManager.
"""
