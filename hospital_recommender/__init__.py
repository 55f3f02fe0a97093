"""Hospital recommendations from uploaded medical reports, powered by Gemini."""

__version__ = "0.1.0"
