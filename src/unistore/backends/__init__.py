"""Concrete storage backends.

Each module imports its vendor SDK at import time; use
``unistore.factory.create_backend`` to load only the one you need.
"""
