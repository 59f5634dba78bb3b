"""State/store layer.

This package is the single source of truth for how updates from the LAN,
radio advertisements, cloud polling and cloud push are merged into a
deterministic per-device state snapshot.
"""
