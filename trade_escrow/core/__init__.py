"""Configuration, data models and errors shared by every layer."""
