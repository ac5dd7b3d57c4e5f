"""
photoauth: OAuth 2.0 authorization server for the picture gallery API
"""

__version__ = "1.0.0"
