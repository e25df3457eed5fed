"""Tests for the discovery, structure and game sync processors."""
from datetime import date
from typing import List

import pytest
from sqlalchemy.orm import Session

from conftest import tournament_dto
from tournament_sync.core.errors import NotFoundError, TransientError
from tournament_sync.models import (
    CompetitionEvent, CompetitionSubEvent, CompetitionDraw, Encounter, Entry, ExternalTeam, Game,
    SyncJob, SyncMetadata, TournamentEvent, TournamentSubEvent, TournamentDraw
)
from tournament_sync.services.sync.processors.competition_structure import CompetitionStructureProcessor
from tournament_sync.services.sync.processors.discovery import (
    DiscoveryProcessor, create_slug, map_tournament_status
)
from tournament_sync.services.sync.processors.game_sync import (
    CompetitionGameSyncProcessor, TournamentGameSyncProcessor, window_days
)
from tournament_sync.services.sync.processors.structure import map_event_game_type
from tournament_sync.services.sync.processors.tournament_structure import (
    TournamentStructureProcessor, game_sync_window
)
from tournament_sync.services.sync.queue.job_types import GameSyncPayload
from tournament_sync.services.tournament_api.dtos import (
    DrawDTO, EntryDTO, EventDTO, MatchDTO, PlayerDTO, SetDTO, SidePlayersDTO, TeamDTO, TeamMatchDTO
)
from tournament_sync.services.tournament_api.result import Found, NotFound


def child_jobs(db: Session, parent_id: str) -> List[SyncJob]:
    db.expire_all()
    return db.query(SyncJob).filter(SyncJob.parent_id == parent_id).order_by(SyncJob.created_at).all()


def metadata_for(db: Session, data_type: str) -> SyncMetadata:
    return db.query(SyncMetadata).filter(SyncMetadata.data_type == data_type).one()


def singles(code: str, home: str, away: str, **kwargs) -> MatchDTO:
    values = dict(
        code=code,
        match_type_id=1,
        winner=1,
        match_time="2024-10-05T19:00:00",
        team1=SidePlayersDTO(player1=PlayerDTO(member_id=home, first_name="Home", last_name=home)),
        team2=SidePlayersDTO(player1=PlayerDTO(member_id=away, first_name="Away", last_name=away)),
        sets=[SetDTO(team1="21", team2="10"), SetDTO(team1="21", team2="12")],
    )
    values.update(kwargs)
    return MatchDTO(**values)


# =============================================================================
# HELPERS
# =============================================================================

class TestMappingHelpers:

    def test_create_slug(self):
        """Should keep lowercase alphanumerics joined by single dashes."""
        assert create_slug("PBO Competitie 2024-2025!") == "pbo-competitie-2024-2025"
        assert create_slug("  Lokerse   Jeugd -- Tornooi ") == "lokerse-jeugd-tornooi"
        assert create_slug(None) == ""

    def test_tournament_status(self):
        assert map_tournament_status(101) == 'finished'
        assert map_tournament_status(202) == 'league_entry_open'
        assert map_tournament_status(999) == 'unknown'

    def test_event_game_type(self):
        """Should make mixed events MX whatever the game type id."""
        assert map_event_game_type(1, 1) == 'S'
        assert map_event_game_type(2, 2) == 'D'
        assert map_event_game_type(2, 3) == 'MX'
        assert map_event_game_type(None, None) == 'S'

    def test_game_sync_window(self):
        """Should run from the first day through the day after the last."""
        assert game_sync_window(tournament_dto("T", start="2024-09-14", end="2024-09-15")) == {
            'window_start': '2024-09-14', 'window_end': '2024-09-16',
        }
        assert game_sync_window(tournament_dto("T", start=None, end=None)) is None

    def test_window_days_from_payload(self):
        """Should include both ends of an explicit window."""
        payload = GameSyncPayload(tournament_code="T", window_start="2024-09-14T00:00:00", window_end="2024-09-16")

        assert window_days(payload, date(2024, 1, 1), 7) == [
            date(2024, 9, 14), date(2024, 9, 15), date(2024, 9, 16)
        ]

    def test_window_days_default(self):
        """Should cover the last N days through today."""
        days = window_days(GameSyncPayload(tournament_code="T"), date(2024, 6, 15), 7)

        assert days[0] == date(2024, 6, 8)
        assert days[-1] == date(2024, 6, 15)
        assert len(days) == 8

    def test_window_days_start_only(self):
        payload = GameSyncPayload(tournament_code="T", window_start="2024-09-14")

        assert window_days(payload, date(2024, 1, 1), 7) == [date(2024, 9, 14)]


# =============================================================================
# DISCOVERY
# =============================================================================

class TestDiscoveryProcessor:

    @pytest.mark.asyncio
    async def test_creates_events_and_schedules_jobs(self, db_session: Session, make_context, mock_api, today):
        """Should create each new tournament and fan out follow-up jobs."""
        mock_api.discover_tournaments.return_value = Found([
            tournament_dto("C1", type_id=1, start="2024-09-14", end="2025-04-30", name="PBO Competitie 2024"),
            tournament_dto("T1", start="2024-06-14", end="2024-06-16", name="Lokerse Jeugdtornooi"),
            tournament_dto("T2", status=101, start="2024-05-01", end="2024-05-02"),
        ])
        ctx = make_context("tournament-discovery")

        result = await DiscoveryProcessor(today=today).process(ctx)

        assert result['success'] is True
        assert (result['processed'], result['created'], result['skipped'], result['failed']) == (3, 3, 0, 0)
        assert len(result['scheduled']) == 3

        competition = db_session.query(CompetitionEvent).filter(CompetitionEvent.visual_code == "C1").one()
        assert competition.season == 2024
        assert competition.slug == "pbo-competitie-2024"
        assert competition.country == "BEL"
        tournament = db_session.query(TournamentEvent).filter(TournamentEvent.visual_code == "T1").one()
        assert tournament.tournament_number == "T1"
        assert db_session.query(TournamentEvent).filter(TournamentEvent.visual_code == "T2").one().status == 'finished'

        children = child_jobs(db_session, ctx.job_id)
        assert [(job.type, job.data['tournament_code']) for job in children] == [
            ("competition-structure-sync", "C1"),
            ("tournament-structure-sync", "T1"),
            ("tournament-game-sync", "T1"),
        ]
        assert metadata_for(db_session, "tournament-discovery").records_matched == 3

    @pytest.mark.asyncio
    async def test_skips_known_tournaments(
        self, db_session: Session, make_context, mock_api, today, competition_event, tournament_event
    ):
        """Should leave tournaments that already exist untouched."""
        mock_api.discover_tournaments.return_value = Found([
            tournament_dto("COMP1", type_id=1),
            tournament_dto("TOUR1"),
        ])
        ctx = make_context("tournament-discovery")

        result = await DiscoveryProcessor(today=today).process(ctx)

        assert (result['created'], result['skipped']) == (0, 2)
        assert child_jobs(db_session, ctx.job_id) == []

    @pytest.mark.asyncio
    async def test_competition_outside_month_window(self, db_session: Session, make_context, mock_api):
        """Should create the competition without scheduling its structure sync."""
        mock_api.discover_tournaments.return_value = Found([tournament_dto("C2", type_id=1)])
        ctx = make_context("tournament-discovery")

        result = await DiscoveryProcessor(today=date(2024, 1, 10)).process(ctx)

        assert result['created'] == 1
        assert result['scheduled'] == []

    @pytest.mark.asyncio
    async def test_single_tournament_by_code(self, db_session: Session, make_context, mock_api, today):
        """Should fetch one tournament when a code is given."""
        mock_api.get_tournament_details.return_value = Found(tournament_dto("T9", status=101))
        ctx = make_context("tournament-discovery", {"tournament_code": "T9"})

        result = await DiscoveryProcessor(today=today).process(ctx)

        assert result['created'] == 1
        mock_api.get_tournament_details.assert_awaited_once_with("T9")
        mock_api.discover_tournaments.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_code_fails(self, db_session: Session, make_context, mock_api, today):
        """Should fail the job and record it when the tournament does not exist."""
        ctx = make_context("tournament-discovery", {"tournament_code": "MISSING"})

        with pytest.raises(NotFoundError):
            await DiscoveryProcessor(today=today).process(ctx)

        metadata = metadata_for(db_session, "tournament-discovery")
        assert metadata.last_sync_status == 'failed'
        assert "MISSING" in metadata.error_message

    @pytest.mark.asyncio
    async def test_nothing_discovered(self, db_session: Session, make_context, mock_api, today):
        """Should succeed with empty counts when the API has nothing."""
        ctx = make_context("tournament-discovery", {"page_size": 10})

        result = await DiscoveryProcessor(today=today).process(ctx)

        assert result['processed'] == 0
        assert mock_api.discover_tournaments.await_args.kwargs['page_size'] == 10


# =============================================================================
# COMPETITION STRUCTURE
# =============================================================================

@pytest.fixture
def competition_api(mock_api):
    """API answering for competition COMP1 with two events and two teams."""
    mock_api.get_tournament_details.return_value = Found(tournament_dto("COMP1", type_id=1, name="PBO Competitie"))
    mock_api.get_tournament_events.return_value = Found([
        EventDTO(code="EV1", name="Heren 1e provinciale", gender_id=1, level_id=1),
        EventDTO(code="EV2", name="Gemengd 2e provinciale", gender_id=3, level_id=2),
    ])
    mock_api.get_tournament_teams.return_value = Found([
        TeamDTO(code="T1", name="Evergem 1H"),
        TeamDTO(code="T2", name="Unknown Club 3H"),
    ])

    def draws(tournament_code, event_code, draw_code=None):
        if event_code == "EV1":
            return Found([DrawDTO(code="EV1-A", event_code="EV1", name="Reeks A", type_id=3, size=8)])
        return NotFound("draws", event_code)

    mock_api.get_event_draws.side_effect = draws
    mock_api.get_draw_entries.return_value = Found([EntryDTO(team=TeamDTO(code="T1", name="Evergem 1H"))])
    return mock_api


class TestCompetitionStructureProcessor:

    @pytest.mark.asyncio
    async def test_full_structure(
        self, db_session: Session, make_context, competition_api, sample_clubs_teams, competition_event
    ):
        """Should sync events, teams, draws and entries in one run."""
        ctx = make_context("competition-structure-sync", {"tournament_code": "COMP1"})

        result = await CompetitionStructureProcessor().process(ctx)

        assert result['events'] == 2
        assert (result['teams'], result['matched'], result['unmatched']) == (2, 1, 1)
        assert (result['draws'], result['entries_created']) == (1, 1)
        assert result['failed_steps'] == []
        assert result['processed'] == 5

        sub_events = {s.visual_code: s for s in db_session.query(CompetitionSubEvent).all()}
        assert sub_events["EV1"].event_type == 'M'
        assert sub_events["EV2"].event_type == 'MX'
        draw = db_session.query(CompetitionDraw).one()
        assert (draw.visual_code, draw.type, draw.size) == ("EV1-A", 'POULE', 8)

        evergem_1h = sample_clubs_teams["teams"]["evergem_1h"]
        db_session.refresh(evergem_1h)
        assert evergem_1h.visual_code == "T1"
        external = {e.external_code: e for e in db_session.query(ExternalTeam).all()}
        assert external["T1"].is_matched is True
        assert external["T1"].matched_team_id == evergem_1h.id
        assert external["T2"].is_matched is False
        assert external["T2"].club_name == "Unknown Club"
        assert db_session.query(Entry).filter(Entry.draw_id == draw.id).one().team_id == evergem_1h.id

        children = child_jobs(db_session, ctx.job_id)
        assert [job.type for job in children] == ["team-matching"]
        assert children[0].data == {
            "tournament_code": "COMP1",
            "unmatched_teams": [{"external_code": "T2", "external_name": "Unknown Club 3H"}],
        }

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(
        self, db_session: Session, make_context, competition_api, sample_clubs_teams, competition_event
    ):
        """Should not duplicate rows when the same structure is synced again."""
        await CompetitionStructureProcessor().process(
            make_context("competition-structure-sync", {"tournament_code": "COMP1"})
        )
        result = await CompetitionStructureProcessor().process(
            make_context("competition-structure-sync", {"tournament_code": "COMP1"})
        )

        assert result['entries_created'] == 0
        assert db_session.query(CompetitionSubEvent).count() == 2
        assert db_session.query(CompetitionDraw).count() == 1
        assert db_session.query(ExternalTeam).count() == 2
        assert db_session.query(Entry).count() == 1

    @pytest.mark.asyncio
    async def test_include_sub_components(
        self, db_session: Session, make_context, competition_api, sample_clubs_teams, competition_event
    ):
        """Should queue a game sync per draw."""
        ctx = make_context(
            "competition-structure-sync", {"tournament_code": "COMP1", "include_sub_components": True}
        )

        await CompetitionStructureProcessor().process(ctx)

        game_syncs = [job for job in child_jobs(db_session, ctx.job_id) if job.type == "competition-game-sync"]
        assert [job.data for job in game_syncs] == [
            {"tournament_code": "COMP1", "event_code": "EV1", "draw_code": "EV1-A"}
        ]

    @pytest.mark.asyncio
    async def test_creates_missing_competition(self, db_session: Session, make_context, competition_api):
        """Should create the competition when structure sync runs first."""
        ctx = make_context("competition-structure-sync", {"tournament_code": "COMP1"})

        await CompetitionStructureProcessor().process(ctx)

        event = db_session.query(CompetitionEvent).filter(CompetitionEvent.visual_code == "COMP1").one()
        assert event.season == 2024
        assert event.last_sync is not None

    @pytest.mark.asyncio
    async def test_one_failing_step(
        self, db_session: Session, make_context, competition_api, sample_clubs_teams, competition_event
    ):
        """Should record a transient step failure and still run the other steps."""
        competition_api.get_tournament_teams.side_effect = TransientError("API returned 503")
        ctx = make_context("competition-structure-sync", {"tournament_code": "COMP1"})

        result = await CompetitionStructureProcessor().process(ctx)

        assert result['failed_steps'] == ['teams']
        assert result['events'] == 2
        assert result['draws'] == 1

    @pytest.mark.asyncio
    async def test_rerun_after_failed_draw(
        self, db_session: Session, make_context, competition_api, sample_clubs_teams, competition_event
    ):
        """Should fill the failed draw on a re-run without duplicating its sibling's entries."""
        teams = sample_clubs_teams["teams"]
        competition_api.get_event_draws.side_effect = lambda tournament_code, event_code, draw_code=None: (
            Found([
                DrawDTO(code="EV1-A", event_code="EV1", name="Reeks A", type_id=3, size=8),
                DrawDTO(code="EV1-B", event_code="EV1", name="Reeks B", type_id=3, size=8),
            ]) if event_code == "EV1" else NotFound("draws", event_code)
        )
        entries_by_draw = {
            "EV1-A": Found([EntryDTO(team=TeamDTO(code="T1", name="Evergem 1H"))]),
            "EV1-B": Found([EntryDTO(team=TeamDTO(code="T3", name="Lokerse BC 2G"))]),
        }
        broken = {"EV1-B"}

        def draw_entries(tournament_code, draw_code):
            if draw_code in broken:
                raise ValueError(f"Unexpected entry payload for {draw_code}")
            return entries_by_draw[draw_code]

        competition_api.get_draw_entries.side_effect = draw_entries

        first = await CompetitionStructureProcessor().process(
            make_context("competition-structure-sync", {"tournament_code": "COMP1"})
        )
        broken.clear()
        second = await CompetitionStructureProcessor().process(
            make_context("competition-structure-sync", {"tournament_code": "COMP1"})
        )

        assert (first['draws'], first['entries_created'], first['failed']) == (1, 1, 1)
        assert (second['draws'], second['entries_created'], second['failed']) == (2, 1, 0)
        draws = {d.visual_code: d for d in db_session.query(CompetitionDraw).all()}
        assert set(draws) == {"EV1-A", "EV1-B"}
        assert [e.team_id for e in db_session.query(Entry).filter(Entry.draw_id == draws["EV1-A"].id)] == [
            teams["evergem_1h"].id
        ]
        assert [e.team_id for e in db_session.query(Entry).filter(Entry.draw_id == draws["EV1-B"].id)] == [
            teams["lokeren_2g"].id
        ]

    @pytest.mark.asyncio
    async def test_missing_tournament(self, make_context, mock_api, competition_event):
        """Should fail when the tournament is unknown to the API."""
        ctx = make_context("competition-structure-sync", {"tournament_code": "COMP1"})


        with pytest.raises(NotFoundError):
            await CompetitionStructureProcessor().process(ctx)


# =============================================================================
# TOURNAMENT STRUCTURE
# =============================================================================

@pytest.fixture
def tournament_api(mock_api):
    """API answering for tournament TOUR1 with a singles and a mixed event."""
    mock_api.get_tournament_details.return_value = Found(
        tournament_dto("TOUR1", start="2024-09-14", end="2024-09-15", name="Lokerse Jeugdtornooi")
    )
    mock_api.get_tournament_events.return_value = Found([
        EventDTO(code="HE", name="Heren Enkel", gender_id=1, game_type_id=1),
        EventDTO(code="GD", name="Gemengd Dubbel", gender_id=3, game_type_id=2),
    ])

    def draws(tournament_code, event_code, draw_code=None):
        if event_code == "HE":
            return Found([DrawDTO(code="HE-A", event_code="HE", name="Hoofdtabel", size=16)])
        return Found([DrawDTO(code="GD-Q", event_code="GD", name="Kwalificatie", type_id=1, qualification=True)])

    def entries(tournament_code, draw_code):
        if draw_code == "HE-A":
            return Found([
                EntryDTO(player1=PlayerDTO(member_id="1", first_name="Jan")),
                EntryDTO(player1=PlayerDTO(member_id="2", first_name="Piet")),
            ])
        return Found([
            EntryDTO(
                player1=PlayerDTO(member_id="3", first_name="Tom"),
                player2=PlayerDTO(member_id="4", first_name="Ann", gender_id=2),
            ),
        ])

    mock_api.get_event_draws.side_effect = draws
    mock_api.get_draw_entries.side_effect = entries
    return mock_api


class TestTournamentStructureProcessor:

    @pytest.mark.asyncio
    async def test_full_structure(self, db_session: Session, make_context, tournament_api, tournament_event):
        """Should sync events, draws and player entries, then queue the game sync window."""
        ctx = make_context("tournament-structure-sync", {"tournament_code": "TOUR1"})

        result = await TournamentStructureProcessor().process(ctx)

        assert (result['events'], result['draws'], result['entries_created']) == (2, 2, 3)
        assert result['processed'] == 4

        sub_events = {s.visual_code: s for s in db_session.query(TournamentSubEvent).all()}
        assert (sub_events["HE"].event_type, sub_events["HE"].game_type) == ('M', 'S')
        assert (sub_events["GD"].event_type, sub_events["GD"].game_type) == ('MX', 'MX')
        draws = {d.visual_code: d for d in db_session.query(TournamentDraw).all()}
        assert draws["HE-A"].type == 'KO'
        assert draws["GD-Q"].type == 'QUALIFICATION'
        assert draws["GD-Q"].qualification is True

        doubles_entry = db_session.query(Entry).filter(Entry.draw_id == draws["GD-Q"].id).one()
        assert doubles_entry.player2_id is not None
        assert doubles_entry.sub_event_id == sub_events["GD"].id

        children = child_jobs(db_session, ctx.job_id)
        assert [(job.type, job.data) for job in children] == [(
            "tournament-game-sync",
            {"tournament_code": "TOUR1", "window_start": "2024-09-14", "window_end": "2024-09-16"},
        )]

    @pytest.mark.asyncio
    async def test_limited_to_event_codes(self, db_session: Session, make_context, tournament_api, tournament_event):
        """Should only sync the requested events."""
        tournament_api.get_tournament_events.return_value = Found([
            EventDTO(code="HE", name="Heren Enkel", gender_id=1, game_type_id=1),
        ])
        ctx = make_context("tournament-structure-sync", {"tournament_code": "TOUR1", "event_codes": ["HE"]})

        result = await TournamentStructureProcessor().process(ctx)

        tournament_api.get_tournament_events.assert_awaited_once_with("TOUR1", "HE")
        assert (result['events'], result['draws']) == (1, 1)

    @pytest.mark.asyncio
    async def test_all_steps_transient(self, db_session: Session, make_context, tournament_api, tournament_event):
        """Should fail for retry when every step failed transiently."""
        db_session.add(TournamentSubEvent(event_id=tournament_event.id, visual_code="HE", name="Heren Enkel"))
        db_session.commit()
        tournament_api.get_tournament_events.side_effect = TransientError("timeout")
        tournament_api.get_event_draws.side_effect = TransientError("timeout")
        ctx = make_context("tournament-structure-sync", {"tournament_code": "TOUR1"})

        with pytest.raises(TransientError):
            await TournamentStructureProcessor().process(ctx)

        assert child_jobs(db_session, ctx.job_id) == []
        assert metadata_for(db_session, "tournament-structure-sync").last_sync_status == 'failed'

    @pytest.mark.asyncio
    async def test_failing_draw_does_not_stop_siblings(
        self, db_session: Session, make_context, tournament_api, tournament_event
    ):
        """Should count a broken draw and keep the others."""
        original = tournament_api.get_draw_entries.side_effect

        def entries(tournament_code, draw_code):
            if draw_code == "HE-A":
                raise ValueError("corrupt entry list")
            return original(tournament_code, draw_code)

        tournament_api.get_draw_entries.side_effect = entries
        ctx = make_context("tournament-structure-sync", {"tournament_code": "TOUR1"})

        result = await TournamentStructureProcessor().process(ctx)

        assert result['failed'] == 1
        assert result['draws'] == 1
        assert result['entries_created'] == 1
        assert metadata_for(db_session, "tournament-structure-sync").last_sync_status == 'partial'


# =============================================================================
# GAME SYNC
# =============================================================================

def add_competition_draw(db: Session, event: CompetitionEvent) -> CompetitionDraw:
    sub_event = CompetitionSubEvent(event_id=event.id, visual_code="EV1", name="Heren 1e provinciale")
    db.add(sub_event)
    db.flush()
    draw = CompetitionDraw(sub_event_id=sub_event.id, visual_code="D1", name="Reeks A", type="POULE")
    db.add(draw)
    db.commit()
    return draw


def encounter_dto(code: str, draw_code: str = "D1", **kwargs) -> TeamMatchDTO:
    values = dict(
        code=code,
        draw_code=draw_code,
        event_code="EV1",
        match_time="2024-10-06T19:00:00",
        team1=TeamDTO(name="Evergem 1H"),
        team2=TeamDTO(name="Lokerse BC 2G"),
        home_score=5,
        away_score=3,
    )
    values.update(kwargs)
    return TeamMatchDTO(**values)


class TestCompetitionGameSyncProcessor:

    @pytest.mark.asyncio
    async def test_sync_by_draw(
        self, db_session: Session, make_context, mock_api, sample_clubs_teams, competition_event
    ):
        """Should reconcile the draw's encounters and link their games."""
        draw = add_competition_draw(db_session, competition_event)
        mock_api.get_encounters_by_draw.return_value = Found([encounter_dto("E1")])
        mock_api.get_team_match_games.return_value = Found([singles("1", "100", "200"), singles("2", "101", "201")])
        ctx = make_context("competition-game-sync", {"tournament_code": "COMP1", "event_code": "EV1", "draw_code": "D1"})

        result = await CompetitionGameSyncProcessor().process(ctx)

        assert result['source'] == 'draw'
        assert (result['encounters'], result['processed'], result['failed']) == (1, 2, 0)
        encounter = db_session.query(Encounter).one()
        assert encounter.draw_id == draw.id
        assert encounter.home_team_id == sample_clubs_teams["teams"]["evergem_1h"].id
        games = db_session.query(Game).all()
        assert {g.visual_code for g in games} == {"1", "2"}
        assert all(g.link_id == encounter.id and g.link_type == 'competition' for g in games)

    @pytest.mark.asyncio
    async def test_sync_by_codes(
        self, db_session: Session, make_context, mock_api, sample_clubs_teams, competition_event
    ):
        """Should fetch each listed encounter and skip missing ones."""
        add_competition_draw(db_session, competition_event)

        def details(tournament_code, code):
            return Found(encounter_dto(code)) if code == "E1" else NotFound("encounter", code)

        mock_api.get_encounter_details.side_effect = details
        ctx = make_context("competition-game-sync", {"tournament_code": "COMP1", "match_codes": ["E1", "E404"]})

        result = await CompetitionGameSyncProcessor().process(ctx)

        assert result['source'] == 'codes'
        assert result['encounters'] == 1
        mock_api.get_encounters_by_draw.assert_not_called()

    @pytest.mark.asyncio
    async def test_window_skips_failing_days(
        self, db_session: Session, make_context, mock_api, sample_clubs_teams, competition_event
    ):
        """Should keep going when one day of the window fails."""
        add_competition_draw(db_session, competition_event)

        def by_date(tournament_code, day):
            if day == "2024-10-05":
                raise TransientError("API returned 502")
            if day == "2024-10-06":
                return Found([encounter_dto("E2"), encounter_dto("E3", draw_code="UNKNOWN")])
            return NotFound("encounters", day)

        mock_api.get_encounters_by_date.side_effect = by_date
        ctx = make_context("competition-game-sync", {
            "tournament_code": "COMP1", "window_start": "2024-10-05", "window_end": "2024-10-07",
        })

        result = await CompetitionGameSyncProcessor().process(ctx)

        assert result['source'] == 'window'
        assert (result['encounters'], result['skipped']) == (1, 1)
        assert mock_api.get_encounters_by_date.await_count == 3
        assert db_session.query(Encounter).one().visual_code == "E2"

    @pytest.mark.asyncio
    async def test_unsynced_draw(self, db_session: Session, make_context, mock_api, competition_event):
        """Should reconcile nothing when the requested draw is not stored."""
        mock_api.get_encounters_by_draw.return_value = Found([encounter_dto("E1", draw_code="D9")])
        ctx = make_context("competition-game-sync", {"tournament_code": "COMP1", "draw_code": "D9"})

        result = await CompetitionGameSyncProcessor().process(ctx)

        assert result['encounters'] == 0
        assert db_session.query(Encounter).count() == 0

    @pytest.mark.asyncio
    async def test_missing_competition(self, make_context, mock_api):
        """Should fail when the competition is not stored."""
        ctx = make_context("competition-game-sync", {"tournament_code": "NOPE"})

        with pytest.raises(NotFoundError):
            await CompetitionGameSyncProcessor().process(ctx)


def add_tournament_draw(db: Session, event: TournamentEvent) -> TournamentDraw:
    sub_event = TournamentSubEvent(event_id=event.id, visual_code="HE", name="Heren Enkel", game_type="S")
    db.add(sub_event)
    db.flush()
    draw = TournamentDraw(sub_event_id=sub_event.id, visual_code="HE-A", name="Hoofdtabel", type="KO")
    db.add(draw)
    db.commit()
    return draw


class TestTournamentGameSyncProcessor:

    @pytest.mark.asyncio
    async def test_sync_by_codes(self, db_session: Session, make_context, mock_api, tournament_event):
        """Should link matches to their draw and append the player entries."""
        draw = add_tournament_draw(db_session, tournament_event)
        matches = {
            "M1": singles("M1", "100", "200", draw_code="HE-A", event_code="HE", score_status=0, sets=[]),
            "M2": singles("M2", "300", "400", draw_code="XX", event_code="HE"),
        }

        def details(tournament_code, code):
            return Found(matches[code]) if code in matches else NotFound("match", code)

        mock_api.get_match_details.side_effect = details
        ctx = make_context("tournament-game-sync", {"tournament_code": "TOUR1", "match_codes": ["M1", "M2", "M3"]})

        result = await TournamentGameSyncProcessor().process(ctx)

        assert result['source'] == 'codes'
        assert (result['draws'], result['processed'], result['skipped']) == (1, 1, 1)
        assert result['entries_created'] == 2

        game = db_session.query(Game).one()
        assert (game.visual_code, game.link_id, game.link_type) == ("M1", draw.id, 'tournament')
        assert game.status == 'WALKOVER'
        assert db_session.query(Entry).filter(Entry.draw_id == draw.id).count() == 2

    @pytest.mark.asyncio
    async def test_sync_by_date_repeated(self, db_session: Session, make_context, mock_api, tournament_event):
        """Should not duplicate games or entries on a second sync."""
        add_tournament_draw(db_session, tournament_event)
        mock_api.get_matches_by_date.return_value = Found([
            singles("M1", "100", "200", draw_code="HE-A"),
            singles("M2", "100", "300", draw_code="HE-A"),
        ])
        payload = {"tournament_code": "TOUR1", "date": "2024-09-14"}

        first = await TournamentGameSyncProcessor().process(make_context("tournament-game-sync", payload))
        second = await TournamentGameSyncProcessor().process(make_context("tournament-game-sync", payload))

        assert first['source'] == 'date'
        assert (first['processed'], first['entries_created']) == (2, 3)
        assert (second['processed'], second['entries_created']) == (2, 0)
        assert db_session.query(Game).count() == 2
        mock_api.get_matches_by_date.assert_awaited_with("TOUR1", "2024-09-14")

    @pytest.mark.asyncio
    async def test_missing_tournament(self, make_context, mock_api):
        ctx = make_context("tournament-game-sync", {"tournament_code": "NOPE"})

        with pytest.raises(NotFoundError):
            await TournamentGameSyncProcessor().process(ctx)
