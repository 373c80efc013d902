"""Test helpers: simulated devices and an in-memory datagram transport."""
