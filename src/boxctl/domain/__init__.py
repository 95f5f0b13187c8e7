"""Domain layer — types, rules, and pure computations.

This layer depends only on stdlib and pydantic.
It must never import from services, infrastructure, commands, or config.
"""
