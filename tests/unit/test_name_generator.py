"""
Unit tests for name_generator module.
Tests: team_name, session_display_name
"""
from coordinator.name_generator import team_name, session_display_name, TEAM_ORDINALS


class TestTeamName:
    """Tests for team_name function."""

    def test_first_team(self):
        assert team_name(0) == "Team Alpha"

    def test_ordinals_in_order(self):
        """Indexes 0-9 map onto the Greek ordinals in order."""
        names = [team_name(i) for i in range(len(TEAM_ORDINALS))]
        assert names[1] == "Team Beta"
        assert names[-1] == "Team Kappa"
        assert len(set(names)) == len(TEAM_ORDINALS)

    def test_numbered_after_ordinals(self):
        """Past the ordinals, teams are numbered from 1."""
        assert team_name(10) == "Team 11"
        assert team_name(24) == "Team 25"

    def test_names_unique(self):
        names = [team_name(i) for i in range(40)]
        assert len(set(names)) == 40


class TestSessionDisplayName:

    def test_uses_session_id(self):
        assert session_display_name("GRID2025") == "Session GRID2025"
