"""
Pack Calculator Service package.

Answers "which whole packs should ship for this order": the fewest items
not below the order quantity, then the fewest packs. It provides:

- app.main: API surface for calculations, configuration, history, cache.
- app.algorithm: The decomposition solver and pack-size validation.
- app.cache: Redis-backed adaptive TTL cache for decompositions.
- app.persistence: PostgreSQL store for pack sizes and history.

Guidelines:
- The solver is pure; caching and history are best-effort around it.
- A cache or history failure never fails a calculation.
"""
