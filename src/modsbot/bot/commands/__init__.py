"""
Command modules for the prefix router.
Each module defines a commands class and a setup function that registers its
command definitions with the router.
The modules are loaded explicitly in main.py to avoid dynamic imports.
"""
