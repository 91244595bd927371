"""
Existence predicates used by the reconciliation steps.

Nothing is tracked across organizations except names (and ids for layout
sections and controls), so each "already migrated?" check is one of the
small functions below.
"""

from typing import Any, Dict, Iterable, NamedTuple, Optional


class EntityKey(NamedTuple):
    """Identifies a migrated entity in logs and reports."""

    scope: str
    kind: str
    name: str

    def __str__(self):
        return f"{self.kind} '{self.name}' ({self.scope})"


def find_by(items: Iterable[Dict[str, Any]], key: str, value: Any) -> Optional[Dict[str, Any]]:
    """Return the first item whose ``key`` equals ``value`` (exact, case-sensitive)."""
    if value is None:
        return None
    for item in items or []:
        if item.get(key) == value:
            return item
    return None


def find_by_name(items: Iterable[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
    return find_by(items, "name", name)


def find_field(fields: Iterable[Dict[str, Any]], field: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """An organization field exists when either its name or reference name is taken."""
    return find_by(fields, "referenceName", field.get("referenceName")) or find_by_name(fields, field.get("name"))


def is_custom_field(field: Dict[str, Any]) -> bool:
    return (field.get("referenceName") or "").startswith("Custom.")


def is_system(entity: Dict[str, Any]) -> bool:
    """WITs and field assignments use ``customization``, states and rules ``customizationType``."""
    customization = entity.get("customization") or entity.get("customizationType")
    return customization == "system"


def is_custom_page(page: Dict[str, Any]) -> bool:
    return page.get("pageType") == "custom"


def find_page(pages: Iterable[Dict[str, Any]], page: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return find_by(pages, "label", page.get("label"))


def find_section(sections: Iterable[Dict[str, Any]], section: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return find_by(sections, "id", section.get("id"))


def find_group(groups: Iterable[Dict[str, Any]], group: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return find_by(groups, "label", group.get("label"))


def find_control(controls: Iterable[Dict[str, Any]], control: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return find_by(controls, "id", control.get("id"))
