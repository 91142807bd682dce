# Ordinal names for teams, in team_index order
TEAM_ORDINALS = [
    'Alpha', 'Beta', 'Gamma', 'Delta', 'Epsilon',
    'Zeta', 'Eta', 'Theta', 'Iota', 'Kappa'
]


def team_name(team_index: int) -> str:
    """Name for the team at a zero-based index: 'Team Alpha' ... 'Team Kappa', then 'Team 11'."""
    if 0 <= team_index < len(TEAM_ORDINALS):
        return f"Team {TEAM_ORDINALS[team_index]}"
    return f"Team {team_index + 1}"


def session_display_name(session_id: str) -> str:
    return f"Session {session_id}"
