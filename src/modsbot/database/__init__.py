"""
Database package for modsbot.
Connection management and schema for the SQLite store.
"""
