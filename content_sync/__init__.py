"""
Content Sync - keeps pages and templates current when the content they embed
changes.
"""

__version__ = "1.0.0"
