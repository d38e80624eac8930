"""
Tribute Cache service package.
"""
