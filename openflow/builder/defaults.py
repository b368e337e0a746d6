"""Type-appropriate default styles and content for newly created elements.

New elements use flow layout (``display: block``, full width).  Absolute
positioning is applied only when the caller supplies an explicit canvas
position.
"""

from __future__ import annotations

from typing import Any, Optional

from openflow.builder.actions import Position

PLACEHOLDER_IMAGE = "https://placehold.co/1024x600?text=Image"

_BASE_STYLES: dict[str, Any] = {
    "display": "block",
    "width": "100%",
    "marginBottom": "16px",
    "boxSizing": "border-box",
}

_TYPE_STYLES: dict[str, dict[str, Any]] = {
    "container": {"padding": "48px 24px", "backgroundColor": "#f8fafc"},
    "section": {"padding": "48px 24px", "backgroundColor": "#f8fafc"},
    "heading": {
        "fontSize": "36px",
        "fontWeight": "bold",
        "color": "#1a1a2e",
        "textAlign": "center",
        "padding": "24px 0",
    },
    "text": {
        "fontSize": "18px",
        "color": "#4b5563",
        "lineHeight": "1.7",
        "padding": "0 24px",
        "textAlign": "center",
    },
    "button": {
        "width": "auto",
        "display": "inline-block",
        "backgroundColor": "#3b82f6",
        "color": "white",
        "padding": "14px 32px",
        "borderRadius": "8px",
        "border": "none",
        "cursor": "pointer",
        "fontWeight": "600",
        "margin": "16px auto",
    },
    "image": {
        "maxWidth": "100%",
        "height": "auto",
        "margin": "24px auto",
        "display": "block",
    },
    "input": {
        "width": "300px",
        "maxWidth": "100%",
        "padding": "12px 16px",
        "border": "1px solid #d1d5db",
        "borderRadius": "6px",
        "margin": "8px auto",
    },
}

_DEFAULT_CONTENT = {
    "heading": "Heading",
    "text": "Text content",
    "button": "Button",
    "link": "Link",
    "image": PLACEHOLDER_IMAGE,
}


def default_styles(element_type: str, position: Optional[Position] = None) -> dict[str, Any]:
    """Styles for a new element of *element_type*.

    With *position* the element is pinned with ``position: absolute`` at the
    given coordinates; without it the element stays in normal flow.
    """
    styles = {**_BASE_STYLES, **_TYPE_STYLES.get(element_type, {})}
    if position is not None:
        styles.update(
            {
                "position": "absolute",
                "left": f"{position.x:g}px",
                "top": f"{position.y:g}px",
            }
        )
    return styles


def default_content(element_type: str) -> str:
    return _DEFAULT_CONTENT.get(element_type, "")
