"""
converge — drive a machine from an unknown state to a declared one.
"""

__version__ = "0.1.0"
