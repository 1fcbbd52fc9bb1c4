# Phrasal package for PatternScope
"""
Lexicon-based text scoring of candidate nodes.
"""
