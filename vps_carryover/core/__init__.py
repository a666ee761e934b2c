"""
Core modules for VPS bandwidth carry-over.

This package contains roster fetching, quota planning, mutation
execution and the scheduler that drives them.
"""
