"""Reference-text tokenization and word normalization.

WHY: Highlighting addresses the reference text word by word, and every
matcher compares words in one canonical form. Tokenizing once, with
stable positional indices, gives the controller, resolver and locator
a shared coordinate system.

HOW: Text is split into paragraphs (blank lines for plain text, <p>
elements for HTML parsed with BeautifulSoup), each paragraph is split
on whitespace, and every piece becomes a Token whose normalized form is
lowercase with non-word characters removed.

RULES:
- Index assignment is purely positional: first token = 0
- Tokens whose normalized form is empty are kept (they occupy a
  position on the render surface) but are never matched
- Empty paragraphs produce no tokens and no Paragraph marker
- Queries are normalized the same way and drop empty words
"""

from __future__ import annotations

import re
from typing import Iterable, List

from bs4 import BeautifulSoup

from listen_along.core.ir import Paragraph, ReferenceDocument, Token

_NON_WORD_RE = re.compile(r"[^\w]", re.UNICODE)
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def normalize_word(word: str) -> str:
    """Lowercase a word and strip every non-word character.

    >>> normalize_word("Fox,")
    'fox'
    """
    return _NON_WORD_RE.sub("", word.lower())


def tokenize_paragraphs(paragraph_texts: Iterable[str]) -> ReferenceDocument:
    """Build a ReferenceDocument from already-separated paragraph texts."""
    tokens: List[Token] = []
    paragraphs: List[Paragraph] = []

    for raw in paragraph_texts:
        words = raw.split()
        if not words:
            continue
        paragraph_index = len(paragraphs)
        start = len(tokens)
        for word in words:
            tokens.append(Token(
                index=len(tokens),
                text=word,
                normalized=normalize_word(word),
                paragraph=paragraph_index,
            ))
        paragraphs.append(Paragraph(
            index=paragraph_index,
            start=start,
            end=len(tokens) - 1,
            text=" ".join(words),
        ))

    return ReferenceDocument(tokens=tokens, paragraphs=paragraphs)


def tokenize_text(text: str) -> ReferenceDocument:
    """Tokenize plain text, treating blank lines as paragraph breaks."""
    return tokenize_paragraphs(_PARAGRAPH_SPLIT_RE.split(text.strip()))


def tokenize_html(html: str) -> ReferenceDocument:
    """Tokenize an HTML transcript, one paragraph per <p> element.

    Documents without any <p> element are treated as a single paragraph
    holding all of their visible text.
    """
    soup = BeautifulSoup(html, "html.parser")
    paragraphs = soup.find_all("p")
    if not paragraphs:
        return tokenize_paragraphs([soup.get_text()])
    return tokenize_paragraphs(p.get_text() for p in paragraphs)


def tokenize_query(text: str) -> List[str]:
    """Normalize free text into the word sequence used for locating."""
    words = (normalize_word(w) for w in text.split())
    return [w for w in words if w]
