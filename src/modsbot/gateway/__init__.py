"""Gateway session and the typed events it produces."""
