"""
Interface layer package.

Command-line entry point and console formatting.
"""
