"""
Optional read-only records API. Requires the ``dashboard`` extra.
"""
