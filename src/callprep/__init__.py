"""
Call prep research engine.

Turns a prospect identifier (email, name, or website) into a structured,
confidence-rated sales brief using a search-augmented model for fact
gathering and a reasoning model for synthesis.
"""

__version__ = "0.1.0"
