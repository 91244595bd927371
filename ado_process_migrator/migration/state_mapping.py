"""
Best-effort mapping of workflow states between source and target WITs.

For each source state the target candidate is, in order of preference:
a visible state with the same name, the first visible state (by order) of
the same category, or the first visible state by order. The last one is a
guess and is reported as such.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

EXACT = "exact"
CATEGORY = "category"
FALLBACK = "fallback"


def state_map_key(wit_name: str, state_name: str) -> str:
    return f"{wit_name}|{state_name}"


def visible_states(states: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted((s for s in states or [] if not s.get("hidden")), key=lambda s: s.get("order") or 0)


def choose_target_state(source_state: Dict[str, Any],
                        target_states: Iterable[Dict[str, Any]]) -> Optional[Tuple[Dict[str, Any], str]]:
    """Return ``(target_state, match_kind)`` or None when no target state is visible."""
    candidates = visible_states(target_states)
    if not candidates:
        return None

    for state in candidates:
        if state.get("name") == source_state.get("name"):
            return state, EXACT

    category = source_state.get("stateCategory")
    for state in candidates:
        if category and state.get("stateCategory") == category:
            return state, CATEGORY

    return candidates[0], FALLBACK


class StateMap:
    """Source state → target state names for one run, keyed by ``<WitName>|<SourceStateName>``."""

    def __init__(self):
        self._entries: Dict[str, Tuple[str, str]] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key: str):
        return key in self._entries

    def __getitem__(self, key: str) -> str:
        return self._entries[key][0]

    def set(self, wit_name: str, source_state_name: str, target_state_name: str, match: str = EXACT):
        self._entries[state_map_key(wit_name, source_state_name)] = (target_state_name, match)

    def match_kind(self, wit_name: str, source_state_name: str) -> Optional[str]:
        entry = self._entries.get(state_map_key(wit_name, source_state_name))
        return entry[1] if entry else None

    def translate(self, wit_name: str, source_state_name: Optional[str]) -> Optional[str]:
        """Translate a state value, falling back to the source value when unmapped."""
        if source_state_name is None:
            return None
        entry = self._entries.get(state_map_key(wit_name, source_state_name))
        return entry[0] if entry else source_state_name

    def fallbacks(self) -> List[str]:
        return [key for key, (_, match) in self._entries.items() if match == FALLBACK]

    def as_dict(self) -> Dict[str, str]:
        return {key: target for key, (target, _) in self._entries.items()}

    def map_states(self, wit_name: str, source_states: Iterable[Dict[str, Any]],
                   target_states: Iterable[Dict[str, Any]]) -> List[str]:
        """
        Map every source state of a WIT and return messages worth showing an operator:
        states that had to use the order fallback and states that could not be mapped.
        """
        target_states = list(target_states or [])
        notes = []
        for source_state in source_states or []:
            name = source_state.get("name")
            choice = choose_target_state(source_state, target_states)
            if choice is None:
                notes.append(f"No visible target state for {wit_name}|{name}; state will be copied untranslated")
                continue
            target_state, match = choice
            self.set(wit_name, name, target_state["name"], match)
            logger.debug(f"State map {wit_name}|{name} -> {target_state['name']} ({match})")
            if match == FALLBACK:
                notes.append(f"State {wit_name}|{name} ({source_state.get('stateCategory')}) has no name or category "
                             f"match; mapped to '{target_state['name']}' by order, verify before migrating work items")
        return notes
