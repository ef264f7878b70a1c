"""
Test support utilities for fireway tests.

Helpers that are not pytest fixtures but are shared across test files,
such as the in-memory Firestore client.
"""
