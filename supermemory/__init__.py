"""
Supermemory - long-term vector memory for conversational assistants.

This package embeds and stores conversation turns in a pluggable vector
backend, retrieves them by semantic similarity, and decides which
exchanges are worth remembering.
"""

__version__ = "1.0.0"
