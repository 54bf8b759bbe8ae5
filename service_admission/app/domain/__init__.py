"""
Domain package for the Admission service: cached entity models and the
patch structures used by write paths that must invalidate them.
"""
