"""shakepay: handshake-confirmed payment session engine."""

__version__ = "0.1.0"
