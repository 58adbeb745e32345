"""npm package quality and security analysis."""

__version__ = "0.1.0"
