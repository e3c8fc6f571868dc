"""Prompt-to-app code agent: durable workflow, sandbox tools and HTTP API."""

__version__ = "0.1.0"
