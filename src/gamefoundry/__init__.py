"""GameFoundry: cascade orchestration of AI model calls for game project generation."""

__version__ = "0.3.0"
