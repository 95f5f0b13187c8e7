"""Configuration layer — host settings, descriptor discovery, logging."""
