"""
Persistence layer used by the indexers.
"""
