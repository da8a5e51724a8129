"""
Scoring Engine - composite 0-100 desirability score per candidate

    distance    0-40  linear from 40 at the pickup to 0 at the search radius
    rating      0-30  rating / 5 * 30, unrated couriers count as 3.0
    experience  0-20  one point per five completed deliveries
    freshness   0-10  full marks up to 5 minutes, nothing from 60 minutes
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.domain.services.candidate_filter import Candidate


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    distance_points: float
    rating_points: float
    experience_points: float
    freshness_points: float

    @property
    def courier(self):
        return self.candidate.courier

    @property
    def distance_km(self) -> Optional[float]:
        return self.candidate.distance_km

    @property
    def score(self) -> float:
        return round(
            self.distance_points + self.rating_points
            + self.experience_points + self.freshness_points,
            2,
        )


class ScoringEngine:
    DISTANCE_WEIGHT = 40.0
    UNKNOWN_DISTANCE_POINTS = 20.0
    RATING_WEIGHT = 30.0
    DEFAULT_RATING = 3.0
    MAX_RATING = 5.0
    EXPERIENCE_WEIGHT = 20.0
    DELIVERIES_PER_POINT = 5
    FRESHNESS_WEIGHT = 10.0
    FRESH_MINUTES = 5.0
    STALE_MINUTES = 60.0

    def __init__(self, config: MarketplaceConfig):
        self.config = config

    def distance_points(self, distance_km: Optional[float]) -> float:
        if distance_km is None:
            return self.UNKNOWN_DISTANCE_POINTS
        radius = self.config.max_search_radius_km
        return max(0.0, self.DISTANCE_WEIGHT - distance_km * self.DISTANCE_WEIGHT / radius)

    def rating_points(self, rating: Optional[float]) -> float:
        value = self.DEFAULT_RATING if rating is None else min(max(rating, 0.0), self.MAX_RATING)
        return value / self.MAX_RATING * self.RATING_WEIGHT

    def experience_points(self, completed_deliveries: Optional[int]) -> float:
        return min(self.EXPERIENCE_WEIGHT, (completed_deliveries or 0) / self.DELIVERIES_PER_POINT)

    def freshness_points(self, last_update: Optional[datetime], now: datetime) -> float:
        """
        Full points up to FRESH_MINUTES, then linear down to 0 at
        STALE_MINUTES; 0 when the courier never reported a position.

        A plain ``10 - minutes / 6`` decay has no plateau and scores a
        one-minute-old ping at about 9.8. It never differs from this
        curve by more than 0.84 points.
        """
        if last_update is None:
            return 0.0
        minutes = (now - last_update).total_seconds() / 60
        if minutes <= self.FRESH_MINUTES:
            return self.FRESHNESS_WEIGHT
        if minutes >= self.STALE_MINUTES:
            return 0.0
        window = self.STALE_MINUTES - self.FRESH_MINUTES
        return self.FRESHNESS_WEIGHT * (self.STALE_MINUTES - minutes) / window

    def score(self, candidate: Candidate, now: Optional[datetime] = None) -> ScoredCandidate:
        now = now or datetime.utcnow()
        courier = candidate.courier
        return ScoredCandidate(
            candidate=candidate,
            distance_points=self.distance_points(candidate.distance_km),
            rating_points=self.rating_points(courier.rating),
            experience_points=self.experience_points(courier.completed_deliveries),
            freshness_points=self.freshness_points(courier.last_location_update, now),
        )

    def rank(self, candidates: Sequence[Candidate], now: Optional[datetime] = None) -> list[ScoredCandidate]:
        """Highest score first; equal scores keep their input order"""
        now = now or datetime.utcnow()
        scored = [self.score(c, now) for c in candidates]
        return sorted(scored, key=lambda s: s.score, reverse=True)

    def select_best(self, candidates: Sequence[Candidate], now: Optional[datetime] = None) -> Optional[ScoredCandidate]:
        ranked = self.rank(candidates, now)
        return ranked[0] if ranked else None
