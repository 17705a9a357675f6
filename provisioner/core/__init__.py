"""Core — domain models, plan engine, configuration and persistence."""
