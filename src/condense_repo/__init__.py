"""Condense a source repository into a single document for an LLM."""

__version__ = "0.1.0"
