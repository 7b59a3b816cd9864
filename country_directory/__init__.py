"""
Forum member directory grouped by country.
"""

__version__ = "1.0.0"
