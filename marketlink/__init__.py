"""
MarketLink

Normalizes third-party market data providers behind one canonical
contract and keeps realtime feeds alive on top of it.
"""
__version__ = "0.1.0"
