# Scanning package for PatternScope
"""
Point-in-time value snapshots, diffs, and the zero-configuration
pattern matchers that run over a diff.
"""
