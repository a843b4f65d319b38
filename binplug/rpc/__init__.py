"""
binplug RPC - parent side of the plugin channel.

This module handles:
- Handshake negotiation (protocol version + magic cookie)
- Child process launch with guaranteed termination
- JSON-RPC 2.0 request/response over a local socket
- The `main` dispatcher interface
"""

__all__ = []
