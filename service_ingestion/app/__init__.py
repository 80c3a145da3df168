"""
Ingestion Service package.

Accepts records, persists them durably and serves them back through a
cache-aside read path. It provides:

- app.main: API surface for writes, reads, health and admin views.
- app.coordinators: write path and read path orchestration.
- app.events: write event dispatch and the cache update handler.
- app.cache: Redis-backed snapshot cache.
- app.persistence: PostgreSQL system of record.

Guidelines:
- The durable store decides existence; the cache only accelerates.
- Cache failures degrade latency, never correctness.
- A write is acknowledged only after the store commits it.
"""
