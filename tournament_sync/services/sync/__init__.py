"""
Tournament Data Sync Service

Keeps competitions, tournaments, encounters and games in step with the
tournament software API.

Key components:
- Matchers: Resolve external team labels onto internal teams
- Reconcilers: Idempotent upserts for entries, encounters and games
- Queue: Durable jobs, retry policy and the worker pool
- Processors: One per job type (discovery, structure sync, game sync, team matching)
- Orchestrator: Enqueue jobs, report health, drive the review queue
"""
