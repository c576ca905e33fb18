"""
Dowser engine: CI run history harvesting and archive resolution.
"""

__version__ = "0.1.0"
