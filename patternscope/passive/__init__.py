# Passive package for PatternScope
"""
Pattern inference from user actions correlated with document mutations.
"""
