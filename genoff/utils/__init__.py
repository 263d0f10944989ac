"""
Shared data structures, statistics and simulation helpers
"""
