"""TCP relay that tunnels ZeroTier UDP traffic over TCP, with a latency benchmark."""

__version__ = "0.2.0"
__all__ = ["greeting", "packet", "relay", "latency"]