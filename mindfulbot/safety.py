import re


REDACTION_TOKEN = "[sensitive content]"

DISCLAIMER = (
    "This conversation is for support and guidance only, not a medical diagnosis. "
    "Please consider discussing these feelings with a qualified professional."
)

# Broad matching, including common misspellings and shorthand.
CRISIS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bsuicid(?:e|al|ally)?\b",
        r"\bkill+(?:s|ed|ing|er)?\b",
        r"\bkil+\b",
        r"\bkms\b",
        r"\bkillme\b",
        r"\b(?:end|ending)\s+(?:my|your|his|her|their)?\s*life\b",
        r"\bself[-\s]?(?:harm|hurt)(?:ing)?\b",
        r"\bcut(?:ting)?\b",
        r"\bhurt(?:ing)?(?:\s+(?:myself|someone|him|her|them))?\b",
        r"\boverdos(?:e|ed|ing)\b",
        r"\bod\b",
        r"\bjump(?:ing)?(?:\s+(?:off|from))?\b",
        r"\bhang(?:ing)?(?:\s+myself)?\b",
        r"\bslit(?:\s+(?:my|your))?(?:\s+(?:wrists|throat))?\b",
        r"\b(?:shoot|gun|knife|stab|murder|attack|bomb|explode)\b",
        r"\bdeath\b",
        r"\bdie(?:d|s|ing)?\b",
        r"\bdying\b",
        r"\bdanger\b",
        r"\bcrisis\b",
        # euphemisms
        r"\bharm(?:ing)?\s+(?:myself|me)\b",
        r"\bend(?:ing)?\s+it\s+all\b",
        r"\b(?:can(?:'|’)?t|cannot)\s+go\s+on\b",
        r"\blife\s+(?:isn(?:'|’)?t|is\s+not)\s+worth\s+living\b",
        r"\bun-?aliv(?:e|ing)\b",
        r"\bbetter\s+off\s+dead\b",
        r"\bno\s+reason\s+to\s+live\b",
    )
)

DISCLAIMER_MARKERS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\*\*\s*Disclaimer\s*:[\s\S]*", re.IGNORECASE),
    re.compile(r"^\s*(?:\*|_)*Disclaimer(?:\*|_)*\s*:.*$", re.IGNORECASE | re.MULTILINE),
)


def is_crisis(message: str) -> bool:
    return any(pattern.search(message) for pattern in CRISIS_PATTERNS)


def sanitize_bot_text(text: str) -> str:
    """Redact every crisis-pattern span in outbound assistant text.

    A replacement can join neighbouring words into a new match, so passes repeat
    until no pattern fires. The redaction token itself never matches.
    """
    sanitized = text
    while is_crisis(sanitized):
        for pattern in CRISIS_PATTERNS:
            sanitized = pattern.sub(REDACTION_TOKEN, sanitized)
    return sanitized


def strip_provider_disclaimer(text: str) -> str:
    stripped = text
    for marker in DISCLAIMER_MARKERS:
        stripped = marker.sub("", stripped)
    return stripped.strip()
