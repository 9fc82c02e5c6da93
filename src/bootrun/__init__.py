"""bootrun: manifest-driven project bootstrap orchestrator."""

__version__ = "1.0.0"
