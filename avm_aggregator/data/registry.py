"""
Static catalog of valuation sources and the one place source labels are
resolved back to a Source.

Upstream labels drift ("Zillow (Zestimate)", "zillow", "Realtor.com",
"realtor"), so every Source carries aliases and `match` does a tolerant
bidirectional comparison instead of call sites comparing strings inline.
"""
from dataclasses import dataclass
from typing import Optional

from .base import SourceKind

# Reserved `source` value of the stream's final event; never a Source id.
COMPLETE_MARKER = "_complete"

@dataclass(frozen=True)
class Source:
    id: str
    display_name: str
    kind: SourceKind
    aliases: tuple[str, ...] = ()

    def names(self) -> tuple[str, ...]:
        return (self.id, self.display_name.lower(), *self.aliases)

SOURCES: tuple[Source, ...] = (
    Source("rentcast", "RentCast", SourceKind.API, ("rent cast",)),
    Source("zillow", "Zillow", SourceKind.BROWSER, ("zestimate",)),
    Source("redfin", "Redfin", SourceKind.BROWSER, ("redfin estimate",)),
    Source("realtor", "Realtor.com", SourceKind.BROWSER, ("realtor.com", "realtor com")),
    Source("trulia", "Trulia", SourceKind.BROWSER),
    Source("comehome", "ComeHome", SourceKind.BROWSER, ("come home",)),
    Source("bankofamerica", "Bank of America", SourceKind.BROWSER, ("bofa", "bank of america")),
    Source("xome", "Xome", SourceKind.BROWSER),
)

_BY_ID = {s.id: s for s in SOURCES}

def get_source(source_id: str) -> Source:
    return _BY_ID[source_id]

def sources_of_kind(kind: SourceKind) -> list[Source]:
    return [s for s in SOURCES if s.kind == kind]

def _clean(label: str) -> str:
    return " ".join(label.strip().lower().split())

def _matches(source: Source, label: str) -> bool:
    first_token = label.split(" ")[0]
    for name in source.names():
        if first_token and first_token in name:
            return True
        if name in label:
            return True
    return False

def match(raw_label: Optional[str], sources: tuple[Source, ...] = SOURCES) -> Optional[Source]:
    """
    Resolve an upstream label to a registered Source.

    A source matches when one of its names contains the label's first token,
    or the label contains one of its names. Returns None for empty labels,
    the completion marker, no match, or more than one match.
    """
    if not isinstance(raw_label, str):
        return None
    label = _clean(raw_label)
    if not label or label == COMPLETE_MARKER:
        return None

    exact = [s for s in sources if label in s.names()]
    if len(exact) == 1:
        return exact[0]

    hits = [s for s in sources if _matches(s, label)]
    if len(hits) == 1:
        return hits[0]
    return None
