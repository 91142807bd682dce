"""
Coordinator Service - Session engine for grid mapping campaigns

Responsibilities:
- Session and participant registry
- Team formation with cyclic role assignment
- Territory distribution from the region catalog
- Session isolation for every membership/assignment write
- Progress views and team leaderboards
"""
