"""Ingestion layer.

Decoders that turn radio advertisements, LAN messages and cloud records into
normalized :class:`~pygovee.state.events.TransportUpdate` objects, plus the
bounded bus that carries them to the reconciliation engine.
"""

__all__: list[str] = []
