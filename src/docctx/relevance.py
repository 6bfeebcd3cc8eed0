"""Relevance scoring.

Two scorers live here:

* ``RelevanceScorer`` weighs a fragment's declared key and tags against a
  per-document-type keyword profile (plus document dependencies). It is
  deterministic: equal scores are ordered by insertion sequence.
* ``score_project_file`` is the generic 0-100 rubric discovery uses to
  decide which files in a project tree are worth injecting at all.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from docctx.models import ContextFragment

BASELINE_SCORE = 0.05
DEPENDENCY_BONUS = 2.0
DIRECT_BONUS = 3.0

_TERM_RE = re.compile(r"[a-z0-9]+")


def terms_of(text: str) -> Set[str]:
    """Lower-case alphanumeric terms of *text* ("tech-stack" → {tech, stack})."""
    return set(_TERM_RE.findall(text.lower()))


@dataclass
class DocumentProfile:
    """Keyword weights and dependency keys for one document type."""
    keywords: Dict[str, float] = field(default_factory=dict)
    dependencies: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping) -> "DocumentProfile":
        keywords = data.get("keywords") or {}
        if isinstance(keywords, (list, tuple)):
            keywords = {k: 1.0 for k in keywords}
        return cls(
            keywords={str(k).lower(): float(v) for k, v in keywords.items()},
            dependencies=tuple(str(d).strip() for d in data.get("dependencies") or ()),
        )


def _kw(**weights: float) -> Dict[str, float]:
    return dict(weights)


# Built-in document template keyword sets
DOCUMENT_PROFILES: Dict[str, DocumentProfile] = {
    "project-charter": DocumentProfile(
        _kw(charter=1.0, objectives=0.8, scope=0.8, summary=0.6, stakeholder=0.5,
            milestones=0.5, budget=0.5, business=0.4),
        ("summary", "scope-plan", "stakeholder-register"),
    ),
    "scope-plan": DocumentProfile(
        _kw(scope=1.0, requirements=0.8, deliverables=0.8, wbs=0.6, objectives=0.5),
        ("project-charter", "requirements"),
    ),
    "risk-analysis": DocumentProfile(
        _kw(risk=1.0, risks=1.0, compliance=0.8, mitigation=0.8, threat=0.6,
            security=0.6, contingency=0.6, assumptions=0.4, constraints=0.4),
        ("tech-stack", "project-charter"),
    ),
    "risk-management": DocumentProfile(
        _kw(risk=1.0, risks=1.0, mitigation=0.8, compliance=0.6, contingency=0.6,
            register=0.4),
        ("project-charter", "scope-plan", "tech-stack"),
    ),
    "risk-register": DocumentProfile(
        _kw(risk=1.0, risks=1.0, register=0.6, mitigation=0.8, owner=0.4),
        ("risk-analysis",),
    ),
    "stakeholder-register": DocumentProfile(
        _kw(stakeholder=1.0, stakeholders=1.0, personas=0.6, communication=0.6,
            sponsor=0.5, roles=0.4),
        ("project-charter", "communication-plan"),
    ),
    "stakeholder-analysis": DocumentProfile(
        _kw(stakeholder=1.0, stakeholders=1.0, influence=0.6, engagement=0.6,
            personas=0.5, communication=0.4),
        ("stakeholder-register",),
    ),
    "communication-plan": DocumentProfile(
        _kw(communication=1.0, stakeholder=0.8, stakeholders=0.8, reporting=0.6,
            meetings=0.4),
        ("stakeholder-register",),
    ),
    "user-stories": DocumentProfile(
        _kw(personas=1.0, persona=1.0, user=0.8, users=0.8, stories=0.8,
            requirements=0.6, acceptance=0.5, summary=0.3),
        ("personas", "summary"),
    ),
    "requirements-specification": DocumentProfile(
        _kw(requirements=1.0, functional=0.8, specification=0.8, user=0.5,
            stories=0.5, acceptance=0.5, constraints=0.4),
        ("user-stories", "scope-plan"),
    ),
    "quality-plan": DocumentProfile(
        _kw(quality=1.0, testing=0.8, acceptance=0.6, metrics=0.5, standards=0.5,
            requirements=0.4),
        ("requirements", "tech-stack", "user-stories"),
    ),
    "tech-stack-analysis": DocumentProfile(
        _kw(tech=1.0, stack=1.0, architecture=0.8, technology=0.8, technical=0.6,
            infrastructure=0.6, dependencies=0.4),
        ("tech-stack",),
    ),
    "technical-specification": DocumentProfile(
        _kw(architecture=1.0, technical=0.8, api=0.8, design=0.6, tech=0.6,
            stack=0.6, data=0.4),
        ("tech-stack", "requirements"),
    ),
    "compliance-review": DocumentProfile(
        _kw(compliance=1.0, regulatory=0.8, gdpr=0.8, sox=0.8, audit=0.6,
            security=0.6, risk=0.4),
        ("risk-analysis",),
    ),
}


class RelevanceScorer:
    """Score fragments against a document type's keyword profile."""

    def __init__(self, profiles: Optional[Mapping[str, DocumentProfile]] = None):
        self.profiles: Dict[str, DocumentProfile] = dict(DOCUMENT_PROFILES)
        if profiles:
            self.profiles.update(profiles)

    def profile_for(self, document_type: str) -> DocumentProfile:
        """Known profile, or one derived from the type's own name."""
        profile = self.profiles.get(document_type)
        if profile is not None:
            return profile
        return DocumentProfile(keywords={t: 1.0 for t in terms_of(document_type)})

    @staticmethod
    def fragment_terms(fragment: ContextFragment) -> Set[str]:
        found = terms_of(fragment.key)
        for tag in fragment.tags:
            found |= terms_of(tag)
        return found

    def signal(self, fragment: ContextFragment, document_type: str) -> float:
        """Keyword and dependency evidence, without baseline or hint."""
        profile = self.profile_for(document_type)
        found = self.fragment_terms(fragment)
        total = sum(w for term, w in profile.keywords.items() if term in found)

        if fragment.key == document_type or document_type in fragment.tags:
            total += DIRECT_BONUS

        if fragment.key in profile.dependencies:
            total += DEPENDENCY_BONUS
        else:
            # Reverse relation: the fragment's own document depends on this type
            related = self.profiles.get(fragment.key)
            if related is not None and document_type in related.dependencies:
                total += DEPENDENCY_BONUS / 2
        return total

    def matches(self, fragment: ContextFragment, document_type: str) -> bool:
        return self.signal(fragment, document_type) > 0

    def score(self, fragment: ContextFragment, document_type: str) -> float:
        """Weighted match; never below the non-zero baseline."""
        raw = BASELINE_SCORE + self.signal(fragment, document_type) + fragment.relevance_hint
        return max(BASELINE_SCORE, round(raw, 6))

    def rank(
        self,
        fragments: Iterable[ContextFragment],
        document_type: str,
    ) -> List[Tuple[ContextFragment, float]]:
        """Fragments with scores, best first; ties keep insertion order."""
        scored = [(f, self.score(f, document_type)) for f in fragments]
        scored.sort(key=lambda pair: (-pair[1], pair[0].sequence))
        return scored


# ---------------------------------------------------------------------------
# Project-file rubric (used by discovery)
# ---------------------------------------------------------------------------

HIGH_VALUE_NAMES = [
    "architecture", "design", "requirements", "specification", "specs",
    "planning", "roadmap", "overview", "introduction", "getting-started",
    "install", "setup", "configuration", "api", "guide", "tutorial",
    "contributing", "changelog", "features", "scope", "objectives",
]

PROJECT_TERMS = [
    "project", "application", "system", "requirements", "features",
    "functionality", "architecture", "design", "implementation",
    "goals", "objectives", "scope", "stakeholder", "user story",
    "use case", "business", "technical", "specification",
]

_HEADER_RE = re.compile(r"^#+\s", re.MULTILINE)


def score_project_file(file_name: str, content: str, rel_path: str) -> int:
    """Generic project relevance of a file, 0-100."""
    name = file_name.lower()
    text = content.lower()
    path = rel_path.lower().replace("\\", "/")
    score = 0

    if any(keyword in name for keyword in HIGH_VALUE_NAMES):
        score += 20

    term_count = sum(1 for term in PROJECT_TERMS if term in text)
    score += min(term_count * 3, 30)

    if "docs" in path or "documentation" in path:
        score += 15
    if "requirements" in path or "specs" in path:
        score += 20
    if "planning" in path or "design" in path:
        score += 15

    if len(content) > 1000:
        score += 10
    if len(content) > 3000:
        score += 10

    if len(_HEADER_RE.findall(content)) >= 3:
        score += 10

    return min(score, 100)


def categorize_project_file(file_name: str, rel_path: str) -> str:
    """primary | planning | development | documentation | other"""
    name = file_name.lower()
    path = rel_path.lower().replace("\\", "/")

    if any(k in name for k in ("overview", "introduction", "getting-started", "setup")):
        return "primary"
    if any(k in name for k in ("requirements", "planning", "roadmap", "scope")) \
            or "requirements" in path or "planning" in path:
        return "planning"
    if any(k in name for k in ("api", "architecture", "design", "technical",
                               "contributing", "development")):
        return "development"
    if "docs" in path or "documentation" in path or "guide" in name or "tutorial" in name:
        return "documentation"
    return "other"
