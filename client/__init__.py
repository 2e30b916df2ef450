"""
Client Package

Consumer-side resilience layer for the market data backend:
- PriceChannelClient: reconnecting WebSocket consumer of /ws/prices
- Price strategies: server aggregation, direct aggregation, static placeholder
- ResilientPriceFeed: tier selection, polling, cooldown and update delivery
"""

from client.feed import ConnectivitySignals, FeedMode, ResilientPriceFeed
from client.price_channel import ChannelState, PriceChannelClient, build_channel_url
from client.strategies import FeedTier, PriceResult

__all__ = [
    "ConnectivitySignals",
    "FeedMode",
    "ResilientPriceFeed",
    "ChannelState",
    "PriceChannelClient",
    "build_channel_url",
    "FeedTier",
    "PriceResult",
]
