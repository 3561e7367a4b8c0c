from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .safety import is_crisis


class TopicKey(str, Enum):
    ANXIETY = "anxiety"
    DEPRESSION = "depression"
    PANIC = "panic"
    STRESS = "stress"
    BIPOLAR = "bipolar"
    PTSD = "ptsd"
    BREATHING = "breathing"
    MUSIC = "music"
    CRISIS = "crisis"
    GENERAL_RESOURCES = "general-resources"


# Keys written by the legacy browser widget.
LEGACY_TOPIC_ALIASES = {"resources": TopicKey.GENERAL_RESOURCES}

CONDITION_PAGES = frozenset(
    {
        TopicKey.ANXIETY,
        TopicKey.DEPRESSION,
        TopicKey.PANIC,
        TopicKey.STRESS,
        TopicKey.BIPOLAR,
        TopicKey.PTSD,
    }
)

RESOURCE_HUB_PATH = "/resources"


@dataclass(frozen=True)
class NavigationTarget:
    path: str
    section: str | None = None


@dataclass(frozen=True)
class Resource:
    key: TopicKey
    title: str
    description: str
    section: str

    @property
    def navigation(self) -> NavigationTarget:
        if self.key in CONDITION_PAGES:
            return NavigationTarget(path=f"/{self.key.value}")
        return NavigationTarget(path=RESOURCE_HUB_PATH, section=self.section)


RESOURCE_MAP: dict[TopicKey, Resource] = {
    resource.key: resource
    for resource in (
        Resource(TopicKey.ANXIETY, "Anxiety Disorders", "Excessive worry or fear affecting daily life.", "anxiety"),
        Resource(TopicKey.DEPRESSION, "Depression", "Persistent sadness or loss of interest.", "depression"),
        Resource(TopicKey.PANIC, "Panic Disorder", "Sudden episodes of intense fear with physical symptoms.", "panic"),
        Resource(TopicKey.STRESS, "Stress Management", "Healthy ways to manage stress and pressure.", "stress"),
        Resource(TopicKey.BIPOLAR, "Bipolar Disorder", "Mood swings between highs and lows.", "bipolar"),
        Resource(TopicKey.PTSD, "PTSD & Trauma", "Support for trauma and its effects.", "ptsd"),
        Resource(TopicKey.BREATHING, "Breathing Exercises", "Guided exercises to calm and relax your body.", "breathing"),
        Resource(TopicKey.MUSIC, "Calming Music & Sounds", "Playlists and sounds to ease stress.", "music"),
        Resource(TopicKey.CRISIS, "24/7 Support Hotlines", "Hotlines to get immediate support, any time.", "crisis"),
        Resource(
            TopicKey.GENERAL_RESOURCES,
            "Mental Health Resources Hub",
            "Explore all our mental health resources.",
            "resources",
        ),
    )
}

# Rotation order for "show me another resource".
RESOURCE_KEYS: tuple[TopicKey, ...] = tuple(RESOURCE_MAP)

# First match wins. Panic is checked before anxiety so "panic attacks" routes to
# the panic page instead of the broader anxiety one.
TOPIC_PATTERNS: tuple[tuple[TopicKey, re.Pattern[str]], ...] = tuple(
    (key, re.compile(pattern, re.IGNORECASE))
    for key, pattern in (
        (TopicKey.PANIC, r"\bpanic(?:king|ky)?(?:\s+attacks?)?\b"),
        (TopicKey.ANXIETY, r"\b(?:anxious|anxiety|worr(?:y|ied|ying|ies))\b"),
        (TopicKey.DEPRESSION, r"\b(?:depress\w*|sad(?:ness)?|hopeless(?:ness)?)\b"),
        (TopicKey.STRESS, r"\b(?:stress\w*|overwhelm\w*|burn\s?out|burnt\s+out)\b"),
        (TopicKey.MUSIC, r"\b(?:music|sounds?|playlists?|songs?)\b"),
        (TopicKey.BREATHING, r"\bbreath\w*\b"),
        (TopicKey.PTSD, r"\b(?:ptsd|trauma\w*|flashbacks?)\b"),
        (TopicKey.BIPOLAR, r"\b(?:bipolar|manic|mania|mood\s+swings?)\b"),
    )
)


def parse_topic_key(value: object) -> TopicKey | None:
    """Map a stored topic value onto the closed set, or None when unknown."""
    if isinstance(value, TopicKey):
        return value
    if not isinstance(value, str):
        return None
    if value in LEGACY_TOPIC_ALIASES:
        return LEGACY_TOPIC_ALIASES[value]
    try:
        return TopicKey(value)
    except ValueError:
        return None


def match_resource(message: str) -> TopicKey:
    if is_crisis(message):
        return TopicKey.CRISIS
    for key, pattern in TOPIC_PATTERNS:
        if pattern.search(message):
            return key
    return TopicKey.GENERAL_RESOURCES


def next_resource_key(current: TopicKey | None) -> TopicKey:
    """Next key in the fixed cycle; never returns ``current``."""
    if current is None:
        return RESOURCE_KEYS[0]
    index = RESOURCE_KEYS.index(current)
    return RESOURCE_KEYS[(index + 1) % len(RESOURCE_KEYS)]


def get_resource(key: TopicKey) -> Resource:
    return RESOURCE_MAP[key]
