"""
Requirement topic matching.

Groups TierStatements from different tiers into RequirementTopics.

Method (deterministic, order-stable):

1. Exact identifier match. Statements carrying a tier-supplied
   requirement identifier are grouped by that identifier
   (case-insensitive). Distinct identifiers never merge.

2. Fuzzy fallback. A statement without an identifier is compared with
   every existing topic on its normalized subject + action key:

     - text is lower-cased, tokenized, stop words and modal verbs are
       dropped, and tokens are stemmed ("encrypted", "encryption" ->
       "encrypt")
     - action tokens come from a fixed obligation-verb vocabulary;
       the remaining tokens are the subject
     - two keys whose action sets are both non-empty and disjoint
       score 0.0 ("encrypt SSN" never matches "retain SSN")
     - otherwise the score is the Jaccard overlap of the full keys,
       averaged with embedding cosine similarity when an embedding
       model is supplied

   A topic's score is the LOWEST score against any of its members
   (complete linkage). The statement joins the best-scoring topic at or
   above the similarity threshold; otherwise it starts a new topic.

3. Same-tier repeats. A second statement from a tier already in the
   topic (same identifier, or a fuzzy join) is folded in: the more
   specific wording stays as that tier's member and the topic is
   flagged low-confidence when the wordings differ. A tier repeating
   itself never produces a topic of its own.

4. Low confidence. A fuzzy join is flagged low-confidence when its
   score lies within the ambiguity margin above the threshold, or when
   a second candidate topic scored within the margin of the winner.

A topic never holds two statements from the same tier.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict

from ringscan.app.normalization.categories import detect_category
from ringscan.app.schemas.statements import TierStatement
from ringscan.app.schemas.tiers import TIER_ORDER, Tier, profile
from ringscan.app.schemas.topics import MatchMethod, RequirementTopic

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tokenization
# ---------------------------------------------------------------------------

STOP_WORDS = frozenset(
    """
    a an the and or of to in on for with without by be been being is are
    was were must shall should not may might can could will would all any
    each every before after at least most no nor than that this these those
    it its from as into onto per via under over within using use used such
    required require requires mandatory ensure ensured only also other
    data information system systems application applications user users
    ought need needs have has had do does done if when where which who
    """.split()
)

ACTION_WORDS = (
    "encrypt", "decrypt", "retain", "retention", "keep", "delete", "purge",
    "archive", "log", "audit", "consent", "collect", "hash", "rotate",
    "access", "authenticate", "authorize", "mask", "anonymize",
    "pseudonymize", "transmit", "transfer", "share", "disclose", "store",
    "process", "notify", "review", "assess", "monitor", "backup", "redact",
    "tokenize", "validate", "sanitize", "expose",
)

_SYNONYMS = {
    "retent": "retain",
    "kept": "retain",
    "keep": "retain",
    "ssns": "ssn",
    "cipher": "encrypt",
    "authoris": "authoriz",
    "anonymis": "anonymiz",
}

_TOKEN_RE = re.compile(r"[a-z][a-z0-9]*")
_SUFFIXES = ("ions", "ion", "ings", "ing", "ed", "s")


def stem(word: str) -> str:
    """
    Tiny suffix-stripping stemmer. Only needs to be consistent, not
    linguistically correct.
    """
    for suffix in _SUFFIXES:
        if word.endswith(suffix) and len(word) - len(suffix) >= 3:
            if suffix == "s" and word.endswith("ss"):
                break
            word = word[: -len(suffix)]
            if (
                suffix in ("ing", "ed", "ings")
                and len(word) > 3
                and word[-1] == word[-2]
                and word[-1] not in "lsz"
            ):
                word = word[:-1]
            break
    if word.endswith(("izat", "isat")):
        word = word[:-2]
    elif word.endswith("e") and len(word) > 4:
        word = word[:-1]
    return _SYNONYMS.get(word, word)


ACTION_STEMS = frozenset(stem(w) for w in ACTION_WORDS)


def tokens(text: str) -> List[str]:
    """Significant stemmed tokens of a text, in order of appearance."""
    return [
        stem(raw)
        for raw in _TOKEN_RE.findall(text.lower())
        if raw not in STOP_WORDS and not raw.isdigit()
    ]


class RequirementKey(BaseModel):
    """Normalized subject + action key of a requirement text."""

    subject: FrozenSet[str]
    action: FrozenSet[str]

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def of(cls, text: str) -> "RequirementKey":
        words = set(tokens(text))
        return cls(
            subject=frozenset(words - ACTION_STEMS),
            action=frozenset(words & ACTION_STEMS),
        )

    @property
    def all(self) -> FrozenSet[str]:
        return self.subject | self.action


def key_similarity(a: RequirementKey, b: RequirementKey) -> float:
    if a.action and b.action and not (a.action & b.action):
        return 0.0
    union = a.all | b.all
    if not union:
        return 0.0
    return len(a.all & b.all) / len(union)


EmbeddingModel = Callable[[str], np.ndarray]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), 0.0, 1.0))


def slugify(text: str, max_words: int = 6) -> str:
    words = [
        w for w in _TOKEN_RE.findall(text.lower()) if w not in STOP_WORDS
    ]
    return "-".join(words[:max_words]) or "requirement"


def identifier_slug(requirement_id: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", requirement_id.lower()).strip("-") or "requirement"


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

class _Cluster:
    def __init__(self, requirement_id: Optional[str] = None) -> None:
        self.requirement_id = requirement_id
        self.members: Dict[Tier, TierStatement] = {}
        self.fuzzy_scores: List[float] = []
        self.low_confidence = False

    def admit(self, statement: TierStatement) -> bool:
        """
        Add a statement to the group. Returns True when it brings a new
        tier; a repeat from a tier already present is folded in, keeping
        the more specific wording.
        """
        kept = self.members.get(statement.tier)
        if kept is None:
            self.members[statement.tier] = statement
            return True
        if _normalized(statement.text) != _normalized(kept.text):
            self.low_confidence = True
        if statement.specificity > kept.specificity:
            self.members[statement.tier] = statement
        return False

    def method(self) -> MatchMethod:
        if self.fuzzy_scores:
            return MatchMethod.FUZZY
        if len(self.members) > 1:
            return MatchMethod.EXACT_IDENTIFIER
        return MatchMethod.SINGLETON


def _normalized(text: str) -> str:
    return " ".join(text.lower().split())


class TopicMatcher:
    """
    Groups statements from all consulted tiers into RequirementTopics.
    """

    def __init__(
        self,
        *,
        similarity_threshold: float = 0.5,
        ambiguity_margin: float = 0.15,
        embedding_model: Optional[EmbeddingModel] = None,
    ) -> None:
        if not 0.0 < similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be in (0, 1]")
        self.similarity_threshold = similarity_threshold
        self.ambiguity_margin = ambiguity_margin
        self.embedding_model = embedding_model
        self._embeddings: Dict[str, np.ndarray] = {}
        self._keys: Dict[str, RequirementKey] = {}

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def _key(self, text: str) -> RequirementKey:
        if text not in self._keys:
            self._keys[text] = RequirementKey.of(text)
        return self._keys[text]

    def _embedding(self, model: EmbeddingModel, text: str) -> np.ndarray:
        if text not in self._embeddings:
            self._embeddings[text] = np.asarray(model(text), dtype=float)
        return self._embeddings[text]

    def similarity(self, text_a: str, text_b: str) -> float:
        score = key_similarity(self._key(text_a), self._key(text_b))
        model = self.embedding_model
        if score == 0.0 or model is None:
            return score
        return (score + cosine_similarity(
            self._embedding(model, text_a), self._embedding(model, text_b)
        )) / 2.0

    def topic_similarity(self, text: str, topic: RequirementTopic) -> float:
        """Best similarity of a free text against any topic member."""
        return max(
            (self.similarity(text, s.text) for s in topic.statements),
            default=0.0,
        )

    # ------------------------------------------------------------------
    # Grouping
    # ------------------------------------------------------------------

    def match(
        self,
        statements: Mapping[Tier, Iterable[TierStatement]],
    ) -> List[RequirementTopic]:
        ordered = [
            statement
            for tier in TIER_ORDER
            for statement in statements.get(tier, ())
        ]

        clusters: List[_Cluster] = []
        by_identifier: Dict[str, _Cluster] = {}

        # 1. exact identifier
        for statement in ordered:
            if statement.requirement_id is None:
                continue
            ident = statement.requirement_id.lower()
            cluster = by_identifier.get(ident)
            if cluster is None:
                cluster = by_identifier[ident] = _Cluster(statement.requirement_id)
                clusters.append(cluster)
            cluster.admit(statement)

        # 2. fuzzy fallback
        for statement in ordered:
            if statement.requirement_id is not None:
                continue
            self._place(statement, clusters)

        topics = self._build_topics(clusters)
        logger.info(
            "normalizer: %d statement(s) grouped into %d topic(s)",
            len(ordered),
            len(topics),
        )
        return topics

    def _place(self, statement: TierStatement, clusters: List[_Cluster]) -> None:
        scored: List[tuple[float, int]] = []
        for index, cluster in enumerate(clusters):
            score = min(
                self.similarity(statement.text, member.text)
                for member in cluster.members.values()
            )
            if score >= self.similarity_threshold:
                scored.append((score, index))

        if not scored:
            cluster = _Cluster()
            cluster.admit(statement)
            clusters.append(cluster)
            return

        # Highest score first; earliest topic wins a tie.
        scored.sort(key=lambda item: (-item[0], item[1]))
        best_score, best_index = scored[0]
        winner = clusters[best_index]

        ambiguous = best_score < self.similarity_threshold + self.ambiguity_margin
        if len(scored) > 1 and best_score - scored[1][0] <= self.ambiguity_margin:
            ambiguous = True

        if winner.admit(statement):
            winner.fuzzy_scores.append(best_score)
        winner.low_confidence = winner.low_confidence or ambiguous

    def _build_topics(self, clusters: List[_Cluster]) -> List[RequirementTopic]:
        topics: List[RequirementTopic] = []
        used_ids: Dict[str, int] = {}

        for cluster in clusters:
            members = [cluster.members[t] for t in TIER_ORDER if t in cluster.members]

            # Most specific statement wins; on a full tie, the more
            # authoritative tier.
            canonical = max(
                members,
                key=lambda s: (s.specificity, profile(s.tier).authority_rank),
            )

            if cluster.requirement_id:
                base = identifier_slug(cluster.requirement_id)
            else:
                base = slugify(canonical.text)
            count = used_ids.get(base, 0) + 1
            used_ids[base] = count
            topic_id = base if count == 1 else f"{base}-{count}"

            detected = detect_category(" ".join(s.text for s in members))

            topics.append(
                RequirementTopic(
                    topic_id=topic_id,
                    label=canonical.text,
                    category=detected.name,
                    statements=members,
                    match_method=cluster.method(),
                    low_confidence=cluster.low_confidence,
                    similarity=(
                        round(min(cluster.fuzzy_scores), 4)
                        if cluster.fuzzy_scores
                        else None
                    ),
                )
            )

        return topics
