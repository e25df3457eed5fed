"""
Services for the tournament sync engine.

This module organizes services into:
- core: Cross-cutting helpers (circuit breaker)
- tournament_api: Tournament software API client, DTOs and lookup results
- sync: Team resolution, reconciliation, the job queue and processors
"""
