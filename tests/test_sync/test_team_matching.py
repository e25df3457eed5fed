"""Tests for the team-matching processor and its review queue."""
import pytest
from sqlalchemy.orm import Session

from tournament_sync.core.config import settings
from tournament_sync.core.errors import ConfigurationError
from tournament_sync.models import ExternalTeam, MatchAuditLog, TeamMatchingReview
from tournament_sync.services.sync.matchers.team_resolver import TeamResolver
from tournament_sync.services.sync.processors.team_matching import (
    MATCH_HIGH, MATCH_MEDIUM, TeamMatchingProcessor, external_team_values
)


def matching_payload(*teams):
    return {
        "tournament_code": "COMP1",
        "unmatched_teams": [{"external_code": code, "external_name": name} for code, name in teams],
    }


def review_for(db: Session, external_code: str) -> TeamMatchingReview:
    return db.query(TeamMatchingReview).filter(TeamMatchingReview.external_team_code == external_code).one()


def external_team(db: Session, external_code: str) -> ExternalTeam:
    return db.query(ExternalTeam).filter(ExternalTeam.external_code == external_code).one()


class TestExternalTeamValues:

    def test_parsed_columns(self):
        """Should store the parsed parts of the label."""
        values = external_team_values("BC Brakel 2G (41)", country_code="BEL", event_code="EV1")

        assert values == {
            'external_name': "BC Brakel 2G (41)",
            'normalized_name': "brakel 2g",
            'club_name': "BC Brakel",
            'team_number': 2,
            'gender': "G",
            'strength': 41,
            'country_code': "BEL",
            'event_code': "EV1",
        }


class TestTeamMatchingProcessor:

    # Automatic matches
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_high_confidence_match(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event
    ):
        """Should link an exact match, audit it and promote the external code."""
        ctx = make_context("team-matching", matching_payload(("X1", "Evergem 2H")))

        result = await TeamMatchingProcessor().process(ctx)

        assert (result['processed'], result['matched'], result['high_confidence']) == (1, 1, 1)
        team = sample_clubs_teams["teams"]["evergem_2h"]
        external = external_team(db_session, "X1")
        assert external.is_matched is True
        assert external.matched_team_id == team.id
        assert external.match_type == MATCH_HIGH
        assert external.match_score == pytest.approx(1.0)

        db_session.refresh(team)
        assert team.visual_code == "X1"
        actions = sorted(a.action for a in db_session.query(MatchAuditLog).all())
        assert actions == ['matched', 'visual_code_backfilled']
        assert db_session.query(TeamMatchingReview).count() == 0

    @pytest.mark.asyncio
    async def test_medium_confidence_match(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event, monkeypatch
    ):
        """Should link a match between the two thresholds as medium confidence."""
        monkeypatch.setattr(settings, "TEAM_MATCH_THRESHOLD", 0.65)
        ctx = make_context("team-matching", matching_payload(("X3", "Evergem 3H")))

        result = await TeamMatchingProcessor().process(ctx)

        assert (result['matched'], result['medium_confidence'], result['high_confidence']) == (1, 1, 0)
        external = external_team(db_session, "X3")
        assert external.match_type == MATCH_MEDIUM
        assert external.matched_team_id == sample_clubs_teams["teams"]["evergem_1h"].id

    @pytest.mark.asyncio
    async def test_match_closes_pending_review(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event
    ):
        """Should resolve an open review once the team matches."""
        db_session.add(TeamMatchingReview(
            tournament_code="COMP1", external_team_code="X1", external_team_name="Evergem 2H",
        ))
        db_session.commit()
        ctx = make_context("team-matching", matching_payload(("X1", "Evergem 2H")))

        await TeamMatchingProcessor().process(ctx)

        review = review_for(db_session, "X1")
        assert review.status == 'resolved'
        assert review.resolution == MATCH_HIGH
        assert review.resolved_team_id == sample_clubs_teams["teams"]["evergem_2h"].id

    # Review queue
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_low_score_goes_to_review(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event
    ):
        """Should queue a review with the best suggestions instead of linking."""
        ctx = make_context("team-matching", matching_payload(("X4", "Evergem 4G")))

        result = await TeamMatchingProcessor().process(ctx)

        assert (result['matched'], result['pending_review']) == (0, 1)
        review = review_for(db_session, "X4")
        assert review.status == 'pending_review'
        assert review.external_team_name == "Evergem 4G"
        assert len(review.suggestions) == 3
        assert {s['club_name'] for s in review.suggestions} == {"Evergem"}
        assert all(s['score'] == pytest.approx(0.5) for s in review.suggestions)
        assert review.external_team_data['team_number'] == 4
        assert external_team(db_session, "X4").is_matched is False

    @pytest.mark.asyncio
    async def test_suggestions_limited(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event, monkeypatch
    ):
        """Should keep at most TEAM_SUGGESTION_LIMIT suggestions."""
        monkeypatch.setattr(settings, "TEAM_SUGGESTION_LIMIT", 2)
        ctx = make_context("team-matching", matching_payload(("X4", "Evergem 4G")))

        await TeamMatchingProcessor().process(ctx)

        assert len(review_for(db_session, "X4").suggestions) == 2

    @pytest.mark.asyncio
    async def test_no_candidates(self, db_session: Session, make_context, sample_clubs_teams, competition_event):
        """Should queue a review without suggestions."""
        ctx = make_context("team-matching", matching_payload(("X5", "Unknown Club 1H")))

        result = await TeamMatchingProcessor().process(ctx)

        assert result['pending_review'] == 1
        review = review_for(db_session, "X5")
        assert review.suggestions == []
        assert review.error_message is None

    @pytest.mark.asyncio
    async def test_matching_error_goes_to_review(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event, monkeypatch
    ):
        """Should record a review with the error and count it as failed."""
        def explode(self, name, context):
            raise ValueError("scorer exploded")

        monkeypatch.setattr(TeamResolver, "rank_candidates", explode)
        ctx = make_context("team-matching", matching_payload(("X6", "Evergem 2H")))

        result = await TeamMatchingProcessor().process(ctx)

        assert (result['errors'], result['failed']) == (1, 1)
        assert review_for(db_session, "X6").error_message == "scorer exploded"
        assert external_team(db_session, "X6").is_matched is False

    @pytest.mark.asyncio
    async def test_settled_review_untouched(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event
    ):
        """Should never reopen an approved review."""
        db_session.add(TeamMatchingReview(
            tournament_code="COMP1", external_team_code="X7", external_team_name="Unknown Club 1H",
            status='approved', resolution='linked_existing_team', notes="checked by staff",
        ))
        db_session.commit()
        ctx = make_context("team-matching", matching_payload(("X7", "Unknown Club 1H")))

        await TeamMatchingProcessor().process(ctx)

        db_session.expire_all()
        review = review_for(db_session, "X7")
        assert review.status == 'approved'
        assert review.notes == "checked by staff"

    @pytest.mark.asyncio
    async def test_repeat_run_refreshes_single_review(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event
    ):
        """Should keep one pending review per external team across runs."""
        payload = matching_payload(("X5", "Unknown Club 1H"))

        await TeamMatchingProcessor().process(make_context("team-matching", payload))
        await TeamMatchingProcessor().process(make_context("team-matching", payload))

        assert db_session.query(TeamMatchingReview).count() == 1
        assert db_session.query(ExternalTeam).count() == 1

    # Inputs
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_picks_up_stored_unmatched_teams(
        self, db_session: Session, make_context, sample_clubs_teams, competition_event
    ):
        """Should match the stored unmatched teams when the payload lists none."""
        db_session.add_all([
            ExternalTeam(tournament_code="COMP1", external_code="S1", external_name="Evergem 2H", is_matched=False),
            ExternalTeam(tournament_code="COMP1", external_code="S2", external_name="Evergem 1D", is_matched=True),
            ExternalTeam(tournament_code="OTHER", external_code="S3", external_name="Evergem 1H", is_matched=False),
        ])
        db_session.commit()
        ctx = make_context("team-matching", {"tournament_code": "COMP1"})

        result = await TeamMatchingProcessor().process(ctx)

        assert (result['processed'], result['high_confidence']) == (1, 1)
        assert external_team(db_session, "S1").is_matched is True

    @pytest.mark.asyncio
    async def test_nothing_to_match(self, make_context, competition_event):
        """Should finish with zero counts."""
        ctx = make_context("team-matching", {"tournament_code": "COMP1"})

        result = await TeamMatchingProcessor().process(ctx)

        assert result['processed'] == 0
        assert result['success'] is True

    @pytest.mark.asyncio
    async def test_unknown_competition(self, make_context):
        """Should fail without a competition to take the season from."""
        payload = matching_payload(("X1", "Evergem 2H"))
        payload["tournament_code"] = "NOPE"
        ctx = make_context("team-matching", payload)

        with pytest.raises(ConfigurationError):
            await TeamMatchingProcessor().process(ctx)
