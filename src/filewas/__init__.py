"""Task.filewas orchestrator: prompt assembly, agent spawning and CEO fallback."""

__version__ = "0.1.0"

__all__ = ["__version__"]
