"""
Utility helpers shared across layers.
"""
