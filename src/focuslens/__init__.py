"""focuslens: activity event pipeline with daily aggregates and LLM insights."""

__version__ = "0.1.0"
