"""
tests/conftest.py

Minimal, safe env defaults: no MongoDB, no .env surprises, console logs.
"""

import os

os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.pop("MONGODB_URI", None)
