"""
Fuzzy matching of free-text product mentions against a merchant catalog.

Each product collects an additive score from independent signals (substring,
no-space substring, token overlap, brand aliases with a small edit-distance
bonus). The first product with the strictly highest score wins; a score of
zero or less means "no match" and callers must ask the customer instead of
guessing.
"""
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

from .text import compact, normalize, tokenize

# Hand-seeded brand aliases: pattern found in the normalized name -> extra aliases
BRAND_ALIASES = (
    (re.compile(r"coca"), ("cocacola", "coca")),
    (re.compile(r"manaos"), ("manaoscola", "manaos")),
    (re.compile(r"yerba"), ("yerbamate", "yrba")),
)


@dataclass
class MatchResult:
    product: Optional[Any]
    score: float

    @property
    def matched(self) -> bool:
        return self.product is not None and self.score > 0


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    row = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        prev_diag, row[0] = row[0], i
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            prev_diag, row[j] = row[j], min(row[j] + 1, row[j - 1] + 1, prev_diag + cost)
    return row[len(b)]


def build_aliases(name_norm: str) -> List[str]:
    aliases = [name_norm.replace(" ", "")]
    for pattern, extra in BRAND_ALIASES:
        if pattern.search(name_norm):
            for alias in extra:
                if alias not in aliases:
                    aliases.append(alias)
    return aliases


def _keywords(product) -> List[str]:
    categories = getattr(product, "categories", None) or []
    keywords = [normalize(str(c)) for c in categories]
    return keywords + tokenize(getattr(product, "description", None))


def _mutual_substring(a: str, b: str) -> bool:
    return a in b or b in a


def score_product(candidate: str, product) -> float:
    query_norm = normalize(candidate)
    if not query_norm:
        return 0
    query_nospace = query_norm.replace(" ", "")
    query_tokens = tokenize(candidate)

    name_norm = normalize(product.name)
    name_nospace = compact(product.name)
    name_tokens = tokenize(product.name)
    keywords = _keywords(product)

    score = 0.0
    if _mutual_substring(query_norm, name_norm):
        score += 3
    if _mutual_substring(query_nospace, name_nospace):
        score += 3

    for token in query_tokens:
        if token in name_tokens or token in name_norm or token in keywords:
            score += 1

    for alias in build_aliases(name_norm):
        if _mutual_substring(alias, query_nospace):
            score += 2
        else:
            dist = levenshtein(alias, query_nospace)
            if dist == 1:
                score += 1.5
            elif dist == 2:
                score += 1
    return score


def match_product(candidate: str, catalog: Iterable) -> MatchResult:
    best = MatchResult(product=None, score=0)
    for product in catalog:
        score = score_product(candidate, product)
        if score > best.score:
            best = MatchResult(product=product, score=score)
    return best


def suggest_products(missing: str, catalog: Sequence, limit: int = 5) -> List[str]:
    """Catalog names that contain the unrecognised text, for the clarification reply."""
    needle = normalize(missing)
    if not needle:
        return []
    return [p.name for p in catalog if needle in normalize(p.name)][:limit]
