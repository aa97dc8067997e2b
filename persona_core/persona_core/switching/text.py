"""
Text utilities for context analysis: keyword counting, chunking, tf-idf and
vector similarity.
"""

from __future__ import annotations
import math
import re
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

DEFAULT_SEPARATORS: Tuple[str, ...] = ("\n\n", "\n", ". ", "? ", "! ", " ", "")

_WORD_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")
_SENTENCE_RE = re.compile(r"[.!?]+")
_SLOT_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@lru_cache(maxsize=2048)
def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(keyword.lower()) + r"\b")


def count_keyword(text: str, keyword: str) -> int:
    """Whole-word (or whole-phrase) occurrences of `keyword` in lower-cased `text`."""
    return len(_keyword_pattern(keyword).findall(text))


def count_keywords(text: str, keywords: Iterable[str]) -> int:
    lowered = text.lower()
    return sum(count_keyword(lowered, kw) for kw in keywords)


def tokenize(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text) if s.strip()]


def split_text(
    text: str,
    chunk_size: int = 500,
    chunk_overlap: int = 50,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> List[str]:
    """
    Recursively split text into chunks of at most `chunk_size` characters.

    Tries each separator in order (paragraph, line, sentence, word,
    character) and only descends to a finer one for pieces that are still
    too long. Adjacent chunks share up to `chunk_overlap` characters.
    """
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")

    separator = separators[-1] if separators else ""
    finer: Sequence[str] = ()
    for i, sep in enumerate(separators):
        if sep == "":
            separator = sep
            break
        if sep in text:
            separator = sep
            finer = separators[i + 1:]
            break

    pieces = text.split(separator) if separator else list(text)
    chunks: List[str] = []
    pending: List[str] = []
    for piece in pieces:
        if not piece:
            continue
        if len(piece) < chunk_size:
            pending.append(piece)
            continue
        if pending:
            chunks.extend(_merge(pending, separator, chunk_size, chunk_overlap))
            pending = []
        if finer:
            chunks.extend(split_text(piece, chunk_size, chunk_overlap, finer))
        else:
            chunks.append(piece)
    if pending:
        chunks.extend(_merge(pending, separator, chunk_size, chunk_overlap))
    return chunks


def _merge(pieces: List[str], separator: str, chunk_size: int, chunk_overlap: int) -> List[str]:
    sep_len = len(separator)
    docs: List[str] = []
    current: List[str] = []
    total = 0
    for piece in pieces:
        extra = sep_len if current else 0
        if current and total + len(piece) + extra > chunk_size:
            doc = separator.join(current).strip()
            if doc:
                docs.append(doc)
            # keep a tail of the previous chunk as overlap
            while current and (total > chunk_overlap or total + len(piece) + (sep_len if current else 0) > chunk_size):
                total -= len(current[0]) + (sep_len if len(current) > 1 else 0)
                current.pop(0)
        current.append(piece)
        total += len(piece) + (sep_len if len(current) > 1 else 0)
    doc = separator.join(current).strip()
    if doc:
        docs.append(doc)
    return docs


def tfidf_terms(
    documents: Sequence[str],
    doc_index: int = 0,
    min_score: float = 0.1,
    min_length: int = 3,
    stopwords: Iterable[str] = (),
    limit: int = 10,
) -> List[Tuple[str, float]]:
    """
    Rank the terms of one document by tf-idf against the whole collection.

    idf is smoothed as 1 + ln(N / (1 + df)). Returns (term, score) pairs,
    highest first, ties broken alphabetically.
    """
    if not documents or doc_index >= len(documents):
        return []
    tokenized = [tokenize(d) for d in documents]
    vocab = sorted({t for doc in tokenized for t in doc})
    if not vocab:
        return []
    col = {term: i for i, term in enumerate(vocab)}

    tf = np.zeros((len(tokenized), len(vocab)), dtype=float)
    for row, doc in enumerate(tokenized):
        for term in doc:
            tf[row, col[term]] += 1.0

    df = (tf > 0).sum(axis=0)
    idf = 1.0 + np.log(len(tokenized) / (1.0 + df))
    scores = tf[doc_index] * idf

    skip = set(stopwords)
    ranked = [
        (term, float(scores[col[term]]))
        for term in vocab
        if scores[col[term]] > min_score and len(term) >= min_length and term not in skip
    ]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return ranked[:limit]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0 or math.isnan(denom):
        return 0.0
    return float(np.dot(va, vb) / denom)


def mean(values: Iterable[float], default: Optional[float] = 0.0) -> Optional[float]:
    vals = list(values)
    if not vals:
        return default
    return float(np.mean(vals))


def fill_slots(
    template: str,
    variables: Dict[str, Any],
    missing: Optional[Callable[[str], str]] = None,
) -> str:
    """
    Replace `{name}` slots in `template` with `variables[name]`.

    Other brace text (JSON samples, `{}` pairs) is kept verbatim. Unknown
    slots go through `missing(name)` or are left untouched.
    """
    def _fill(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return missing(name) if missing is not None else match.group(0)

    return _SLOT_RE.sub(_fill, template)
