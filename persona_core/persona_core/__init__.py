"""
persona_core

Context-aware persona switching engine.
"""

__version__ = "0.1.0"
