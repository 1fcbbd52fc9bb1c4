# Hashing package for PatternScope
"""
MinHash signatures of DOM subtrees and the banded LSH index.
"""
