"""
RankingRun — the aggregate root of one rank-and-prune job.

Status, phase counters, tier counters and cost all live on this row; the
per-record results live in scored_connections.
"""
from sqlalchemy import Column, Text, Integer, Float, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base, utcnow
from app.config import ALL_TIERS


class RankingRun(Base):
    __tablename__ = 'ranking_runs'

    id = Column(Text, primary_key=True)
    owner_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False, default='')
    status = Column(Text, nullable=False, default='pending')

    total_connections = Column(Integer, nullable=False, default=0)
    phase1_processed = Column(Integer, nullable=False, default=0)
    phase2_total = Column(Integer, nullable=False, default=0)
    phase2_processed = Column(Integer, nullable=False, default=0)
    phase2_failed = Column(Integer, nullable=False, default=0)
    external_calls = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Float, nullable=False, default=0.0)   # USD
    max_budget = Column(Float, nullable=True)                     # USD

    tier_protected = Column(Integer, nullable=False, default=0)
    tier_definite_keep = Column(Integer, nullable=False, default=0)
    tier_strong_keep = Column(Integer, nullable=False, default=0)
    tier_borderline = Column(Integer, nullable=False, default=0)
    tier_likely_remove = Column(Integer, nullable=False, default=0)
    tier_definite_remove = Column(Integer, nullable=False, default=0)

    criteria = Column(JSON, default=dict)
    protected_keywords = Column(JSON, default=dict)

    pause_reason = Column(Text, nullable=True)   # user / budget / service_unavailable
    error = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now())
    phase1_completed_at = Column(DateTime(timezone=True), nullable=True)
    phase2_completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    connections = relationship(
        'ScoredConnection',
        back_populates='run',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    @property
    def tier_counts(self) -> dict:
        return {tier: getattr(self, f'tier_{tier}') or 0 for tier in ALL_TIERS}

    def set_tier_counts(self, counts: dict):
        for tier in ALL_TIERS:
            setattr(self, f'tier_{tier}', counts.get(tier, 0))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'status': self.status,
            'total_connections': self.total_connections or 0,
            'phase1_processed': self.phase1_processed or 0,
            'phase2_total': self.phase2_total or 0,
            'phase2_processed': self.phase2_processed or 0,
            'phase2_failed': self.phase2_failed or 0,
            'external_calls': self.external_calls or 0,
            'estimated_cost': round(self.estimated_cost or 0.0, 4),
            'max_budget': self.max_budget,
            'tier_counts': self.tier_counts,
            'criteria': self.criteria or {},
            'protected_keywords': self.protected_keywords or {},
            'pause_reason': self.pause_reason,
            'error': self.error,
            'summary': self.summary,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'phase1_completed_at': _iso(self.phase1_completed_at),
            'phase2_completed_at': _iso(self.phase2_completed_at),
            'completed_at': _iso(self.completed_at),
        }


def _iso(value):
    return value.isoformat() if value else None
