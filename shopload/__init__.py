"""
shop-load: constant-arrival-rate load testing for the coin shop service.
"""

__version__ = "1.0.0"
