"""Congestion control, packet encryption, replay protection and configuration for a UDP tunnel server."""

__version__ = "4.0.0"