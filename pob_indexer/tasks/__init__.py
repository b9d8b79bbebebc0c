"""
Indexer Background Tasks

Async polling tasks that run alongside the FastAPI app:
- iteration_indexer: Round snapshots (lifecycle, tallies, projects)
- cert_indexer: Certs, team rosters, eligibility, profiles
- scheduler: Interval timer with an in-flight guard
"""
