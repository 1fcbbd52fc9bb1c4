# Detection package for PatternScope
"""
Four-signal classification: structural candidates, phrasal, semantic
and behavioral evidence, aggregated into ranked detections.
"""
