"""tempokey - tempo and key resolution for catalog tracks."""

__version__ = "0.1.0"
