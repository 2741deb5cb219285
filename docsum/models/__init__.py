"""Configuration, data models, errors and cancellation primitives."""
