"""
Shared fetch and time helpers.
"""
