"""
Rate limiting package for the Marketplace Service.

Holds the window admission controller that enforces per-identity request
budgets and exempts verified internal callers.
"""
