"""Domain value objects."""

from mutespot.domain.value_objects.action_verbs import (
    VERB_SPECS,
    ActionVerb,
    EntityType,
    VerbSpec,
    inverse_of,
    is_playlist_scoped,
    parse_verb,
    spec_for,
)

__all__ = [
    "VERB_SPECS",
    "ActionVerb",
    "EntityType",
    "VerbSpec",
    "inverse_of",
    "is_playlist_scoped",
    "parse_verb",
    "spec_for",
]
