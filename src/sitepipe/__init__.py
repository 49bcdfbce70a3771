"""sitepipe: build orchestration for a static website."""

__version__ = "0.1.0"
