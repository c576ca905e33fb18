"""
Dowser command line.
"""
