"""
Restaurant and location storage.

Responsibilities:
- Define the narrow read/write interface the search pipeline consumes.
- Provide a pandas-backed implementation over two CSV tables
  (restaurants, locations) for local and test deployments.
"""
