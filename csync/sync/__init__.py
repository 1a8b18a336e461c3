"""
Tag-driven synchronization of contacts and contact groups between
Google accounts.
"""
