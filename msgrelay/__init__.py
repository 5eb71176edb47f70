"""msgrelay - Anthropic Messages relay over OpenAI-compatible streaming upstreams."""

__version__ = "0.1.0"
SERVICE_NAME = "msgrelay"
