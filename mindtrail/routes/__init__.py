"""Route modules for Mindtrail.

This package contains route handlers for:
- visualization.py: Stateless graph conversions (DSL, markup, completion)
- session.py: Learning sessions (chat, guided steps, graph edits, progression)
"""
