"""OpenAI-compatible image generation gateway in front of fal's queue API."""

__version__ = "0.1.0"
