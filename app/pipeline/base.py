"""
Pipeline data contracts.

Both pipelines (ranking and standard qualification) consume the same
Connection records and criteria; everything after import diverges. These
dataclasses are the shapes passed between the scorer, the workers and the
external-service clients.
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional


@dataclass(frozen=True)
class Connection:
    """One imported contact. Immutable once imported."""
    first_name: str = ''
    last_name: str = ''
    url: str = ''
    email: str = ''
    company: str = ''
    position: str = ''
    connected_on: str = ''

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Connection':
        return cls(
            first_name=(d.get('first_name') or '').strip(),
            last_name=(d.get('last_name') or '').strip(),
            url=(d.get('url') or d.get('profile_url') or '').strip(),
            email=(d.get('email') or d.get('email_address') or '').strip(),
            company=(d.get('company') or '').strip(),
            position=(d.get('position') or d.get('title') or '').strip(),
            connected_on=(d.get('connected_on') or '').strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class QualificationCriteria:
    target_titles: List[str] = field(default_factory=list)
    target_industries: List[str] = field(default_factory=list)
    free_text_description: str = ''
    exclude_titles: List[str] = field(default_factory=list)
    exclude_companies: List[str] = field(default_factory=list)
    connected_after: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.target_titles or self.target_industries or self.free_text_description.strip())

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'QualificationCriteria':
        d = d or {}
        return cls(
            target_titles=_clean_list(d.get('target_titles')),
            target_industries=_clean_list(d.get('target_industries')),
            free_text_description=(d.get('free_text_description') or '').strip(),
            exclude_titles=_clean_list(d.get('exclude_titles')),
            exclude_companies=_clean_list(d.get('exclude_companies')),
            connected_after=d.get('connected_after') or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_EXCLUDE_TITLES = ['Student', 'Intern', 'Retired', 'Unemployed', 'Seeking']

DEFAULT_FILM_KEYWORDS = [
    'film', 'filmmaker', 'director', 'producer', 'actor', 'actress',
    'cinematographer', 'screenwriter', 'post production', 'vfx',
    'visual effects', 'stunt', 'gaffer', 'grip', 'set design',
]

DEFAULT_MUSIC_KEYWORDS = [
    'musician', 'music', 'band', 'artist', 'songwriter', 'composer', 'dj',
    'singer', 'rapper', 'vocalist', 'recording', 'audio engineer',
    'sound engineer', 'music producer', 'record label',
]


@dataclass
class ProtectedKeywords:
    """Two named keyword lists that exempt a record from removal."""
    film: List[str] = field(default_factory=lambda: list(DEFAULT_FILM_KEYWORDS))
    music: List[str] = field(default_factory=lambda: list(DEFAULT_MUSIC_KEYWORDS))

    def categories(self):
        """(label, keywords) pairs in match order."""
        return [('film/TV', self.film), ('music', self.music)]

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'ProtectedKeywords':
        if d is None:
            return cls()
        return cls(film=_clean_list(d.get('film')), music=_clean_list(d.get('music')))

    def to_dict(self) -> Dict[str, List[str]]:
        return asdict(self)


@dataclass
class ScoreBreakdown:
    """Deterministic scorer output for one record."""
    title_score: int
    company_score: int
    recency_score: int
    total: int
    is_protected: bool = False
    protected_reason: Optional[str] = None


@dataclass
class EnrichmentResult:
    """One record's result from the enrichment service, correlated by id."""
    id: int
    ai_score: int = 0
    reasoning: str = ''
    geography: str = ''
    industry: str = ''
    company_size: str = ''
    sources: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class QualificationResult:
    """One record's verdict from the low-cost classifier."""
    qualification: str       # qualified / not_qualified
    confidence: str          # high / medium / low
    reasoning: str
    connection: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _clean_list(values) -> List[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = values.split(',')
    return [v.strip() for v in values if v and str(v).strip()]
