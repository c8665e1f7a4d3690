"""
Topic canonicalization and phrase clustering.

Near-duplicate canonical keys ("xyz policy reform", "xyz policy reforms") are
merged into one PhraseCluster. Similarity is the larger of character n-gram
cosine similarity and token Jaccard overlap. Clusters are the connected
components of the "similar" graph, which makes the result independent of the
order keys are processed in.
"""

import logging
from typing import Dict, List, Mapping, Optional
from uuid import NAMESPACE_URL, UUID, uuid5

from sklearn.feature_extraction.text import CountVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from trend_pulse.config import ClusteringConfig
from trend_pulse.processing.interfaces import BaseClusterer, ClusteringError
from trend_pulse.processing.normalize import normalize_topic
from trend_pulse.types import PhraseCluster, WindowStats

logger = logging.getLogger(__name__)


def canonical_event_id(canonical_key: str) -> UUID:
    """Stable event id derived from a canonical key."""
    return uuid5(NAMESPACE_URL, f"trend-pulse:{canonical_key}")


def token_jaccard(a: str, b: str) -> float:
    """Jaccard overlap of whitespace tokens."""
    tokens_a, tokens_b = set(a.split()), set(b.split())
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def phrase_similarity(a: str, b: str, ngram_size: int = 3) -> float:
    """
    Similarity of two canonical keys in [0, 1].

    Args:
        a: First key
        b: Second key
        ngram_size: Character n-gram size

    Returns:
        max(char n-gram cosine, token Jaccard)
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    matrix = _char_similarity_matrix([a, b], ngram_size)
    return max(float(matrix[0, 1]), token_jaccard(a, b))


def _char_similarity_matrix(phrases: List[str], ngram_size: int):
    vectorizer = CountVectorizer(
        analyzer="char_wb",
        ngram_range=(ngram_size, ngram_size),
        lowercase=False,
    )
    vectors = vectorizer.fit_transform(phrases)
    return cosine_similarity(vectors)


class _UnionFind:
    """Disjoint sets over string keys."""

    def __init__(self, keys: List[str]):
        self._parent = {key: key for key in keys}

    def find(self, key: str) -> str:
        root = key
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[key] != root:
            self._parent[key], key = root, self._parent[key]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        # Smaller key wins so roots do not depend on union order
        if root_b < root_a:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a

    def groups(self) -> Dict[str, List[str]]:
        groups: Dict[str, List[str]] = {}
        for key in self._parent:
            groups.setdefault(self.find(key), []).append(key)
        return groups


class PhraseClusterer(BaseClusterer):
    """
    Clusters canonical keys by alias and string similarity.

    The canonical phrase of a cluster is the member with the highest
    evidence weight (mentions x source authority); ties go to the longer
    phrase, then to the lexicographically smaller one.
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        aliases: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize clusterer.

        Args:
            config: Clustering settings
            aliases: Raw-name to canonical-name map (config aliases if None)
        """
        self._config = config or ClusteringConfig()
        raw_aliases = aliases if aliases is not None else self._config.aliases
        self._aliases = {
            normalize_topic(name): normalize_topic(target)
            for name, target in raw_aliases.items()
            if normalize_topic(name) and normalize_topic(target)
        }

    @property
    def threshold(self) -> float:
        return self._config.similarity_threshold

    def resolve_alias(self, key: str) -> str:
        """Canonical name of a key after alias resolution."""
        return self._aliases.get(key, key)

    def cluster(self, evidence: Dict[str, WindowStats]) -> List[PhraseCluster]:
        """
        Group keys into clusters.

        Args:
            evidence: Window stats per canonical key

        Returns:
            Clusters sorted by canonical key; every key appears in exactly one
        """
        keys = sorted(key for key in evidence if key)
        if not keys:
            return []

        groups = _UnionFind(keys)

        # Alias resolution: keys sharing an alias target, or a key that is
        # another key's alias target, belong together
        by_target: Dict[str, str] = {}
        for key in keys:
            target = self.resolve_alias(key)
            if target in evidence and target != key:
                groups.union(key, target)
            if target in by_target:
                groups.union(key, by_target[target])
            else:
                by_target[target] = key

        if len(keys) > 1:
            try:
                matrix = _char_similarity_matrix(keys, self._config.ngram_size)
            except ValueError as e:
                raise ClusteringError(f"Failed to vectorize {len(keys)} keys: {e}") from e

            for i in range(len(keys)):
                for j in range(i + 1, len(keys)):
                    similarity = max(float(matrix[i, j]), token_jaccard(keys[i], keys[j]))
                    if similarity >= self.threshold:
                        groups.union(keys[i], keys[j])

        clusters = [
            self._build_cluster(sorted(members), evidence)
            for members in groups.groups().values()
        ]
        clusters.sort(key=lambda c: c.canonical_key)

        merged = sum(1 for c in clusters if len(c.member_keys) > 1)
        logger.debug(f"Clustered {len(keys)} keys into {len(clusters)} clusters ({merged} merged)")
        return clusters

    def _build_cluster(self, members: List[str], evidence: Dict[str, WindowStats]) -> PhraseCluster:
        canonical = max(
            members,
            key=lambda k: (evidence[k].evidence_weight, len(k), _reverse_lex(k)),
        )
        canonical_stats = evidence[canonical]

        return PhraseCluster(
            canonical_phrase=canonical_stats.display_label or canonical,
            canonical_key=canonical,
            canonical_event_id=canonical_event_id(canonical),
            member_phrases=sorted({evidence[k].display_label or k for k in members}),
            member_keys=members,
            similarity_threshold=self.threshold,
            total_mentions=sum(evidence[k].mentions_7d for k in members),
            top_authority_score=max(evidence[k].top_authority for k in members),
            evidence_weight=sum(evidence[k].evidence_weight for k in members),
        )

    @staticmethod
    def assign(key: str, clusters: List[PhraseCluster]) -> Optional[PhraseCluster]:
        """Cluster a key belongs to, if any."""
        for cluster in clusters:
            if key in cluster.member_keys:
                return cluster
        return None


def _reverse_lex(key: str) -> List[int]:
    """Sort key under which max() picks the lexicographically smallest string."""
    return [-ord(ch) for ch in key]
