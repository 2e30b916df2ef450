"""
FastAPI Application Package

This package contains the FastAPI application factory and routing logic.
It serves as the entry point for the backend API, providing the verified
market-data REST endpoints and the live price WebSocket channel.
"""
