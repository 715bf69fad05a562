# backend/tasks/__init__.py
"""
Background email work: pacing, batch dispatch, logging and monitoring.
"""
