"""Core measurement pipeline: configuration, measurement, polling, state and wiring."""
