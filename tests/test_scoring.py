"""
Tests for ScoringEngine - composite courier score
"""
from datetime import datetime, timedelta

import pytest

from pharmadispatch.db.models.courier import Courier
from pharmadispatch.domain.services.candidate_filter import Candidate
from pharmadispatch.domain.services.scoring import ScoringEngine

NOW = datetime(2024, 6, 1, 12, 0, 0)


def _candidate(distance_km=None, rating=None, completed=0, minutes=None, courier_id=1):
    courier = Courier(
        id=courier_id,
        name=f"Courier {courier_id}",
        rating=rating,
        completed_deliveries=completed,
        last_location_update=NOW - timedelta(minutes=minutes) if minutes is not None else None,
    )
    return Candidate(courier=courier, distance_km=distance_km)


@pytest.fixture
def engine(config) -> ScoringEngine:
    return ScoringEngine(config)


class TestComponents:

    @pytest.mark.unit
    def test_distance_linear_to_radius(self, engine):
        assert engine.distance_points(0) == 40
        assert engine.distance_points(7.5) == pytest.approx(20)
        assert engine.distance_points(15) == 0
        assert engine.distance_points(30) == 0

    @pytest.mark.unit
    def test_unknown_distance_is_neutral(self, engine):
        assert engine.distance_points(None) == 20

    @pytest.mark.unit
    def test_rating(self, engine):
        assert engine.rating_points(5.0) == 30
        assert engine.rating_points(None) == pytest.approx(18)
        assert engine.rating_points(7.0) == 30

    @pytest.mark.unit
    def test_experience_capped(self, engine):
        assert engine.experience_points(0) == 0
        assert engine.experience_points(25) == 5
        assert engine.experience_points(100) == 20
        assert engine.experience_points(1000) == 20

    @pytest.mark.unit
    def test_freshness(self, engine):
        assert engine.freshness_points(None, NOW) == 0
        assert engine.freshness_points(NOW - timedelta(minutes=1), NOW) == 10
        assert engine.freshness_points(NOW - timedelta(minutes=5), NOW) == 10
        assert engine.freshness_points(NOW - timedelta(minutes=50), NOW) == pytest.approx(10 * 10 / 55)
        assert engine.freshness_points(NOW - timedelta(minutes=60), NOW) == 0
        assert engine.freshness_points(NOW - timedelta(hours=3), NOW) == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("minutes", [0, 1, 5, 6, 15, 32.5, 45, 59, 60, 90])
    def test_freshness_tracks_plain_decay(self, engine, minutes):
        plain = max(0.0, 10 - minutes / 6)

        points = engine.freshness_points(NOW - timedelta(minutes=minutes), NOW)

        assert abs(points - plain) <= 0.84


class TestRanking:

    @pytest.mark.scenario
    def test_experienced_nearby_courier_beats_distant_newcomer(self, engine):
        x = _candidate(distance_km=0, rating=5.0, completed=100, minutes=1, courier_id=1)
        y = _candidate(distance_km=10, rating=3.0, completed=0, minutes=50, courier_id=2)

        best = engine.select_best([y, x], now=NOW)

        assert best.courier.id == 1
        assert best.score == pytest.approx(100)
        assert engine.score(y, NOW).score < 50

    @pytest.mark.unit
    def test_score_bounded(self, engine):
        perfect = engine.score(_candidate(0, 5.0, 500, 0), NOW)
        worst = engine.score(_candidate(20, 0.0, 0, None), NOW)

        assert perfect.score == 100
        assert worst.score == 0

    @pytest.mark.unit
    def test_ties_keep_input_order(self, engine):
        first = _candidate(distance_km=2, rating=4.0, courier_id=1)
        second = _candidate(distance_km=2, rating=4.0, courier_id=2)

        ranked = engine.rank([first, second], now=NOW)

        assert [s.courier.id for s in ranked] == [1, 2]

    @pytest.mark.unit
    def test_no_candidates(self, engine):
        assert engine.select_best([], now=NOW) is None
