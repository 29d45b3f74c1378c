"""
rtunnel - reverse SSH tunnel relay.

Exposes a local TCP service on a remote relay host by dialing out over SSH,
requesting a remote listener there, and relaying every accepted connection
back to the local endpoint.
"""

__version__ = "0.1.0"
