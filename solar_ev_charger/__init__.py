"""Throttle an EV charging station to the locally available solar surplus."""

__version__ = "0.1.0"
