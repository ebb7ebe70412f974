"""
depfetch - package acquisition core of a dependency-management client.

Repository backends live in `depfetch.repos`.
"""

__version__ = "0.1.0"
