"""
Throttling service package.
"""
