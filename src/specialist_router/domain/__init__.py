"""
Domain types shared across the routing pipeline.

Purpose
- Profiles, task requests, classification/composition results, handoff state,
  domain events, ids, and the error taxonomy.

Nothing here performs I/O or imports third-party packages.
"""
