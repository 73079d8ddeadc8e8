"""Polymarket BTC up/down balance and position refresh, order book recording and scalp analysis."""

__version__ = "0.1.0"