"""Utilities for rendering element trees in the CLI."""

from __future__ import annotations

from openflow.db.models import Element


def render_tree(elements: list[Element], page_name: str) -> str:
    """Render a page's element forest as an ASCII tree.

    Siblings are shown in ``(order, id)`` order.  Elements whose parent is
    not on the page are listed under a separate ``(orphaned)`` heading, and
    an element reached twice is shown once with a ``[cycle]`` marker.
    """
    ids = {el.id for el in elements}
    children: dict[int | None, list[Element]] = {}
    orphans: list[Element] = []
    for el in elements:
        if el.parent_id is not None and el.parent_id not in ids:
            orphans.append(el)
        else:
            children.setdefault(el.parent_id, []).append(el)
    for siblings in children.values():
        siblings.sort(key=lambda e: (e.order, e.id))

    lines = [f"📄 {page_name}"]
    visited: set[int] = set()

    def _render(el: Element, prefix: str, is_last: bool) -> None:
        connector = "└── " if is_last else "├── "
        if el.id in visited:
            lines.append(f"{prefix}{connector}[cycle] #{el.id}")
            return
        visited.add(el.id)
        lines.append(f"{prefix}{connector}{_label(el)}")
        child_prefix = prefix + ("    " if is_last else "│   ")
        kids = children.get(el.id, [])
        for i, child in enumerate(kids):
            _render(child, child_prefix, i == len(kids) - 1)

    roots = children.get(None, [])
    for i, root in enumerate(roots):
        _render(root, "", i == len(roots) - 1)

    if orphans:
        lines.append("(orphaned)")
        for i, el in enumerate(orphans):
            _render(el, "", i == len(orphans) - 1)

    # Members of a parent cycle are unreachable from any root.
    unreached = [el for el in elements if el.id not in visited]
    if unreached:
        lines.append("(unreachable)")
        for el in unreached:
            lines.append(f"    #{el.id} {el.element_type} -> parent #{el.parent_id}")

    return "\n".join(lines)


def _label(el: Element) -> str:
    label = f"{_get_icon(el.element_type)} {el.element_type} #{el.id}"
    if el.content:
        text = el.content if len(el.content) <= 40 else el.content[:37] + "..."
        label += f"  {text!r}"
    return label


def _get_icon(element_type: str) -> str:
    icons = {
        "section": "🧱",
        "container": "📦",
        "heading": "🔠",
        "text": "📝",
        "paragraph": "📝",
        "button": "🔘",
        "image": "🖼️ ",
        "link": "🔗",
        "form": "📋",
        "input": "⌨️ ",
    }
    return icons.get(element_type, "▫️ ")
