"""
Admission Service application package.

Wires the sliding-window rate limiter, usage meter and read-through
cache to the shared store and exposes them over FastAPI.
"""
