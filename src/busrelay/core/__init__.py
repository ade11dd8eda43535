"""Core types shared across transport, gateway and entrypoint."""
