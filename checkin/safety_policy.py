from __future__ import annotations

import re


# Red-flag phrases that always end the call at RED. Plain phrase matching only:
# a false positive costs a human callback, a false negative can cost a patient.
HARD_STOP_PHRASES: tuple[str, ...] = (
    "chest pain",
    "chest pressure",
    "chest tightness",
    "crushing",
    "trouble breathing",
    "difficulty breathing",
    "shortness of breath",
    "short of breath",
    "can't breathe",
    "cannot breathe",
    "can not breathe",
    "bleeding",
    "blood everywhere",
    "won't stop bleeding",
    "confusion",
    "confused",
    "disoriented",
    "radiating",
    "spreading pain",
    "pain is spreading",
    "pain spreading",
    "high fever",
    "very high fever",
    "fever of 103",
    "fever of 104",
    "fever of 105",
    "severe pain",
    "unbearable pain",
    "passed out",
    "fainted",
    "emergency",
    "911",
    "ambulance",
    "heart attack",
    "stroke",
    "coughing up blood",
    "vomiting blood",
)

_HARD_STOP_PATS = tuple(
    (phrase, re.compile(r"(?<![a-z0-9])" + re.escape(phrase).replace("'", "['’]?") + r"(?![a-z0-9])", re.I))
    for phrase in HARD_STOP_PHRASES
)

# Word forms and readings the fixed phrases cannot enumerate.
_SPREAD = r"(radiat(e|es|ed|ing)|spread(s|ing)?|shoot(s|ing)?)"
_BODY = r"(arm|arms|jaw|back|neck|shoulder|shoulders|chest)"
HARD_STOP_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "radiating pain",
        re.compile(
            r"\bpain\b[^.?!]{0,30}\b" + _SPREAD + r"\b"
            r"|\b" + _SPREAD + r"\b[^.?!]{0,30}\b(to|into|down|up|through) (my |the |his |her )?(left |right )?" + _BODY + r"\b",
            re.I,
        ),
    ),
    (
        "fever reading",
        re.compile(
            r"\b(fever|temperature|temp)\b[^.?!0-9]{0,20}(10[3-9]|11[0-9])(\.\d+)?(?![0-9])"
            r"|\b(fever|temperature|temp)\b[^.?!0-9]{0,20}(39\.[5-9]|4[0-3])(\.\d+)?(?![0-9])",
            re.I,
        ),
    ),
)


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").replace("’", "'")).strip()


def matched_hard_stops(text: str) -> list[str]:
    """Return the red-flag phrases found in `text`, in catalog order, then any pattern labels."""
    t = _normalize(text)
    if not t:
        return []
    hits = [phrase for phrase, pat in _HARD_STOP_PATS if pat.search(t)]
    return hits + [label for label, pat in HARD_STOP_PATTERNS if pat.search(t)]


def matches_hard_stop(text: str) -> bool:
    return bool(matched_hard_stops(text))
