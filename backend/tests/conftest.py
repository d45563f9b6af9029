# backend/tests/conftest.py
import os
import sys

# Keep config quiet and deterministic under pytest
os.environ.setdefault("ENVIRONMENT", "test")

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
