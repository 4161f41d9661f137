"""
Helpers shared across test modules.
"""
