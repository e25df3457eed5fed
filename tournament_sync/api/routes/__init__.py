"""
API routes.

- sync: job triggers, job inspection, sync health and the team-matching review queue
"""
