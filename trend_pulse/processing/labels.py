"""
Label quality classification and context building.

A trend label like "Senate Blocks Tariff Bill" says what happened; a label
like "Pentagon" only names an entity. Entity-only labels are kept, but they
are backed by context terms and verb-centred phrases drawn from the same
source documents so that readers (and the lifecycle) can tell a real story
from background chatter.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from trend_pulse.config import ContextConfig
from trend_pulse.processing.aggregate import CoOccurrence
from trend_pulse.types import LabelQuality

logger = logging.getLogger(__name__)

# Action verbs that make a phrase describe an event
ACTION_VERBS = frozenset({
    # Legislative
    "vote", "votes", "voted", "voting", "pass", "passes", "passed", "passing",
    "block", "blocks", "blocked", "blocking", "reject", "rejects", "rejected",
    "approve", "approves", "approved", "sign", "signs", "signed", "signing",
    "veto", "vetoes", "vetoed", "filibuster", "filibusters", "filibustered",
    # Executive
    "fire", "fires", "fired", "firing", "resign", "resigns", "resigned",
    "nominate", "nominates", "nominated", "appoint", "appoints", "appointed",
    "order", "orders", "ordered", "ordering", "pardon", "pardons", "pardoned",
    "commute", "commutes", "commuted", "revoke", "revokes", "revoked",
    # Judicial
    "rule", "rules", "ruled", "overturn", "overturns", "overturned",
    "uphold", "upholds", "upheld", "strike", "strikes", "struck", "striking",
    "dismiss", "dismisses", "dismissed", "grant", "grants", "granted",
    "deny", "denies", "denied", "affirm", "affirms", "affirmed",
    # Law enforcement
    "arrest", "arrests", "arrested", "arresting", "indict", "indicts", "indicted",
    "sue", "sues", "sued", "suing", "charge", "charges", "charged", "charging",
    "convict", "convicts", "convicted", "acquit", "acquits", "acquitted",
    "sentence", "sentences", "sentenced", "raid", "raids", "raided",
    "seize", "seizes", "seized", "deport", "deports", "deported",
    "detain", "detains", "detained",
    # Policy and diplomacy
    "announce", "announces", "announced", "announcing", "launch", "launches", "launched",
    "ban", "bans", "banned", "banning", "sanction", "sanctioned",
    "threaten", "threatens", "threatened", "warn", "warns", "warned",
    "demand", "demands", "demanded", "propose", "proposes", "proposed",
    "withdraw", "withdraws", "withdrew", "withdrawn", "suspend", "suspends", "suspended",
    "expand", "expands", "expanded", "cut", "cuts", "cutting",
    # Conflict and crisis
    "attack", "attacks", "attacked", "attacking", "invade", "invades", "invaded",
    "bomb", "bombs", "bombed", "collapse", "collapses", "collapsed",
    "halt", "halts", "halted", "halting", "escalate", "escalates", "escalated",
    "cease", "ceases", "ceased", "freeze", "freezes", "froze", "frozen",
    # Economic
    "raise", "raises", "raised", "raising", "lower", "lowers", "lowered",
    "surge", "surges", "surged", "drop", "drops", "dropped",
    # General
    "face", "faces", "faced", "facing", "win", "wins", "won", "winning",
    "lose", "loses", "lost", "losing", "defeat", "defeats", "defeated",
    "confirm", "confirms", "confirmed", "confirming", "release", "releases", "released",
    "reveal", "reveals", "revealed", "expose", "exposes", "exposed",
    "target", "targets", "targeted", "targeting", "kill", "kills", "killed",
    "end", "ends", "ended", "ending", "begin", "begins", "began", "beginning",
    "start", "starts", "started", "starting", "stop", "stops", "stopped",
    "introduce", "introduces", "introduced",
})

# Nouns that indicate something happened
EVENT_NOUNS = frozenset({
    "ruling", "trial", "hearing", "verdict", "indictment", "conviction", "acquittal",
    "lawsuit", "injunction", "subpoena", "testimony", "deposition", "sentencing",
    "vote", "bill", "election", "impeachment", "nomination", "confirmation", "veto",
    "filibuster", "shutdown", "debate", "speech", "summit", "rally", "resignation",
    "shooting", "protest", "crisis", "scandal", "attack", "bombing", "strike", "raid",
    "ceasefire", "invasion", "collapse", "evacuation", "explosion", "assassination",
    "sanctions", "tariffs", "investigation", "probe", "audit", "deportation",
    "pardon", "ban", "order", "mandate", "regulation", "reform",
})


def _words(phrase: str) -> List[str]:
    return [w.strip(".,;:!?\"'()[]").lower() for w in phrase.split() if w.strip()]


def has_action_word(phrase: str) -> bool:
    """Whether a phrase contains an action verb or an event noun."""
    return any(w in ACTION_VERBS or w in EVENT_NOUNS for w in _words(phrase))


def classify_label(label: str, is_event_phrase_hint: bool = False) -> LabelQuality:
    """
    Classify a display label.

    Rules, in order:
        a) marked as an event phrase upstream -> event_phrase
        b) 3+ words containing an action verb or event noun -> event_phrase
        c) 2 words or fewer -> entity_only
        d) anything else -> fallback_generated

    Args:
        label: Display label of the trend
        is_event_phrase_hint: Upstream extraction flag

    Returns:
        LabelQuality
    """
    if is_event_phrase_hint:
        return LabelQuality.EVENT_PHRASE

    words = _words(label)
    if len(words) >= 3 and has_action_word(label):
        return LabelQuality.EVENT_PHRASE
    if len(words) <= 2:
        return LabelQuality.ENTITY_ONLY
    return LabelQuality.FALLBACK_GENERATED


@dataclass
class TrendContext:
    """Context attached to a trend label."""

    terms: List[str] = field(default_factory=list)
    phrases: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    burst_score: float = 0.0

    @property
    def has_context(self) -> bool:
        return bool(self.terms or self.phrases)


class ContextBuilder:
    """
    Builds supporting context for entity-only labels.

    Context terms are the topics that co-occur most often in the same source
    documents; context phrases are co-occurring verb-centred phrases. The
    burst score is the share (0-100) of the entity's documents that also
    carry one of the chosen context terms.
    """

    def __init__(self, config: Optional[ContextConfig] = None, blocklist: Iterable[str] = ()):
        self._config = config or ContextConfig()
        self._blocklist = frozenset(blocklist)

    def build(
        self,
        label: str,
        label_quality: LabelQuality,
        cooccurrence: CoOccurrence,
    ) -> TrendContext:
        """
        Assemble context for one trend.

        Args:
            label: Display label of the trend
            label_quality: Classification of the label
            cooccurrence: Co-occurrence data for the trend's member keys

        Returns:
            TrendContext (empty for labels that are not entity-only)
        """
        if label_quality != LabelQuality.ENTITY_ONLY or cooccurrence.doc_count == 0:
            return TrendContext()

        candidates = sorted(
            (
                (count, key)
                for key, count in cooccurrence.topic_counts.items()
                if count >= self._config.min_cooccurrence
                and key not in self._blocklist
                and not has_action_word(key)
            ),
            key=lambda item: (-item[0], item[1]),
        )
        term_keys = [key for _, key in candidates[: self._config.max_context_terms]]
        terms = [cooccurrence.topic_labels.get(key) or key for key in term_keys]

        phrase_candidates = sorted(
            (
                (count, phrase)
                for phrase, count in cooccurrence.phrase_counts.items()
                if len(_words(phrase)) >= 2 and has_action_word(phrase)
            ),
            key=lambda item: (-item[0], item[1]),
        )
        phrases = [phrase for _, phrase in phrase_candidates[: self._config.max_context_phrases]]

        covered = set()
        for key in term_keys:
            covered |= cooccurrence.docs_by_topic.get(key, set())
        burst_score = round(100.0 * len(covered) / cooccurrence.doc_count, 2)

        summary = None
        if phrases:
            summary = f"{label}: {phrases[0]}"
        elif terms:
            summary = f"{label} alongside {', '.join(terms[:3])}"

        return TrendContext(terms=terms, phrases=phrases, summary=summary, burst_score=burst_score)
