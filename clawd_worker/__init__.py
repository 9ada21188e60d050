"""
Clawd autonomous governance vote worker.
"""

__version__ = "0.1.0"
