# Verification package for PatternScope
"""
Behavioral verification of bound patterns against temporal invariants.
"""
