"""
Test support utilities for fanmap tests.

``tasks`` holds module-level task functions (isolated workers import them
by reference); ``fakes`` holds an in-memory pool for deterministic
dispatcher tests.
"""
