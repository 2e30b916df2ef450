"""
Services Package

Long-lived server components created in the application lifespan:
- MarketDataService: aggregation cycles, snapshot cache, history and metrics
- PriceHub: WebSocket subscriber registry and periodic price broadcast
"""
