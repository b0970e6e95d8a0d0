"""
Backend package for the persona API.

This package provides a FastAPI application serving persona speech synthesis
and chunked avatar images, with database abstractions (in-memory, SQLAlchemy
and Firestore) so the service can run on or off Firebase.
"""
