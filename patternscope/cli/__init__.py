# CLI package for PatternScope
"""
Read-only CLI over HTML files.

Commands:
    patternscope detect      — Classify a document for one pattern
    patternscope explain     — Explain a detection signal by signal
    patternscope diff        — Diff two captures and match patterns
    patternscope signatures  — List landmark structural signatures
    patternscope similar     — Compare the structure of two nodes
"""
