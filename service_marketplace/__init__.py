"""
Service Marketplace listing service.
"""
