"""
Domain rules for service listings.
"""
