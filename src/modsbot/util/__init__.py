"""
Utility helpers for modsbot.

- **logger.py**: Centralized logging configuration with colored console output,
  rotating file handlers, and per-session log files. Clamps noisy libraries
  (discord, aiohttp, aiosqlite) to ERROR. Uses prompt_toolkit for console output.
"""
