"""Repository analyzer: agent tool-calling loop plus a staged documentation pipeline."""

__version__ = "0.1.0"
