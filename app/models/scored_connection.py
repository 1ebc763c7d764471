"""
ScoredConnection — one row per imported connection per ranking run.

Created in bulk by Phase 1, mutated per record by Phase 2 enrichment and by
user overrides. rank_position is written once, by finalization.
"""
from sqlalchemy import (
    Column, Integer, Text, Boolean, DateTime, JSON, ForeignKey, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base, utcnow


class ScoredConnection(Base):
    __tablename__ = 'scored_connections'
    __table_args__ = (
        Index('ix_scored_connections_run_enrichment', 'run_id', 'enrichment_status'),
        Index('ix_scored_connections_run_tier', 'run_id', 'tier'),
        Index('ix_scored_connections_run_rank', 'run_id', 'rank_position'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('ranking_runs.id', ondelete='CASCADE'), nullable=False)

    first_name = Column(Text, default='')
    last_name = Column(Text, default='')
    profile_url = Column(Text, default='')
    email = Column(Text, default='')
    company = Column(Text, default='')
    position = Column(Text, default='')
    connected_on = Column(Text, default='')

    title_score = Column(Integer, nullable=False, default=0)      # -40..40
    company_score = Column(Integer, nullable=False, default=0)    # -5..10
    recency_score = Column(Integer, nullable=False, default=0)    # 0..10
    deterministic_score = Column(Integer, nullable=False, default=0)
    ai_score = Column(Integer, nullable=True)                     # 0..40
    total_score = Column(Integer, nullable=False, default=0)
    tier = Column(Text, nullable=False)
    is_protected = Column(Boolean, nullable=False, default=False)
    protected_reason = Column(Text, nullable=True)

    enrichment_status = Column(Text, nullable=False, default='skipped')
    enrichment_error = Column(Text, nullable=True)
    claimed_by = Column(Text, nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    ai_reasoning = Column(Text, nullable=True)
    ai_geography = Column(Text, nullable=True)
    ai_industry = Column(Text, nullable=True)
    ai_company_size = Column(Text, nullable=True)
    grounding_data = Column(JSON, nullable=True)   # source URLs

    user_override = Column(Text, nullable=True)    # keep / remove
    rank_position = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    run = relationship('RankingRun', back_populates='connections')

    @property
    def full_name(self) -> str:
        return f'{self.first_name or ""} {self.last_name or ""}'.strip()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'run_id': self.run_id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'profile_url': self.profile_url,
            'email': self.email,
            'company': self.company,
            'position': self.position,
            'connected_on': self.connected_on,
            'title_score': self.title_score,
            'company_score': self.company_score,
            'recency_score': self.recency_score,
            'deterministic_score': self.deterministic_score,
            'ai_score': self.ai_score,
            'total_score': self.total_score,
            'tier': self.tier,
            'is_protected': bool(self.is_protected),
            'protected_reason': self.protected_reason,
            'enrichment_status': self.enrichment_status,
            'enrichment_error': self.enrichment_error,
            'ai_reasoning': self.ai_reasoning,
            'ai_geography': self.ai_geography,
            'ai_industry': self.ai_industry,
            'ai_company_size': self.ai_company_size,
            'grounding_data': self.grounding_data or [],
            'user_override': self.user_override,
            'rank_position': self.rank_position,
        }
