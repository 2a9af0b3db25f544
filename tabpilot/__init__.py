"""tabpilot: LLM-driven browser tab agents with skill recording and replay."""

__version__ = "0.1.0"

__all__ = ["__version__"]
