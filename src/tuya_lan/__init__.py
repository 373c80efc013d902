"""Tuya LAN protocol engine: frame codec, AES-GCM layer and v3.5 session negotiation."""

__version__ = "0.4.0"
