"""lanlink - encrypted request/response messaging between paired LAN devices."""

__version__ = "0.1.0"
