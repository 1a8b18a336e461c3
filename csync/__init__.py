"""
csync - N-way Google Contacts synchronization.

Keeps contacts and contact groups identical across any number of Google
accounts by tagging every synchronized entity with a shared identifier.
"""

__version__ = "0.1.0"
