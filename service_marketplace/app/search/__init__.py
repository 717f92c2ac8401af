"""
Search package: request models, query composition and orchestration.
"""
