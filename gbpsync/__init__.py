"""
Google Business Profile token lifecycle and scheduled sync engine.
"""

__version__ = "0.1.0"
