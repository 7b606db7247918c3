"""
glucolink - rate-limit aware LibreLinkUp glucose fetcher.
"""

__version__ = "0.1.0"
