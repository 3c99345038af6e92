"""
whenfree - find the half-hour slots that suit a whole group.
"""

__version__ = "0.3.0"
