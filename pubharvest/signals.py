from __future__ import annotations

from collections import Counter
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .config import KEYWORD_STOPWORDS, SIGNAL_TOP_N
from .models import Authorship, Publication, RankedItem, Signals
from .text_utils import extract_keywords, normalize_key, normalize_person_name


def _rank(counts: Mapping[str, int], labels: Mapping[str, str], top_n: int) -> List[RankedItem]:
    """
    Order grouped counts by frequency, breaking ties on the display label.
    """
    items = [RankedItem(label=labels[key], count=count) for key, count in counts.items()]
    items.sort(key=lambda item: (-item.count, item.label))
    return items[:top_n]


def _group(values: Iterable[str], key_fn: Callable[[str], str]) -> tuple:
    """
    Count values by normalized key; each group's label is its most common
    original spelling (lexicographically first on ties).
    """
    counts: Counter = Counter()
    spellings: Dict[str, Counter] = {}
    for value in values:
        if not value:
            continue
        key = key_fn(value)
        if not key:
            continue
        counts[key] += 1
        spellings.setdefault(key, Counter())[value.strip()] += 1

    labels = {
        key: sorted(variants.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
        for key, variants in spellings.items()
    }
    return counts, labels


def compute_signals(
        publications: Sequence[Publication],
        coauthor_lookup: Optional[Mapping[str, Sequence[str]]] = None,
        top_n: int = SIGNAL_TOP_N,
        stopwords: Iterable[str] = KEYWORD_STOPWORDS,
) -> Signals:
    """
    Summarise a set of publications: count, year range and histogram, and the
    most frequent venues, title keywords and co-authors.
    """
    coauthor_lookup = coauthor_lookup or {}
    stop = frozenset(stopwords)

    years = Counter(p.year for p in publications if p.year)

    journal_counts, journal_labels = _group((p.journal for p in publications), normalize_key)

    keyword_counts: Counter = Counter()
    for p in publications:
        # a word counts once per title
        keyword_counts.update(set(extract_keywords(p.title, stop)))
    keyword_labels = {k: k for k in keyword_counts}

    coauthor_names: List[str] = []
    for p in publications:
        coauthor_names.extend(coauthor_lookup.get(p.id) or [])
    coauthor_counts, coauthor_labels = _group(coauthor_names, normalize_person_name)

    return Signals(
        count=len(publications),
        year_min=min(years) if years else None,
        year_max=max(years) if years else None,
        years=dict(sorted(years.items())),
        top_journals=_rank(journal_counts, journal_labels, top_n),
        top_keywords=_rank(keyword_counts, keyword_labels, top_n),
        top_coauthors=_rank(coauthor_counts, coauthor_labels, top_n),
    )


def author_counts(publications: Sequence[Publication], authorship: Mapping[str, Authorship]) -> Optional[Dict[str, int]]:
    """
    First/last authorship tallies over publications with a known position;
    None when no position is known at all.
    """
    known = first = last = 0
    for p in publications:
        pos = authorship.get(p.id)
        if pos is None:
            continue
        known += 1
        if pos.is_first:
            first += 1
        if pos.is_last:
            last += 1
    if not known:
        return None
    return {"first": first, "last": last, "total": len(publications), "known": known}
