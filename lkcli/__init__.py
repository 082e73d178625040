"""LiveKit command-line control plane."""

__version__ = "2.6.0"
