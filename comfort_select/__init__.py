"""comfort-select: LLM-panel comfort control loop for a multi-room apartment."""

__version__ = "0.4.0"
