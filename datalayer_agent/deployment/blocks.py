"""
Marker-delimited block algebra for ``layout/theme.liquid``.

The layout carries two named blocks (head loader, body fallback) and one
render directive. Patching always strips every existing instance first and
then re-inserts, so re-applying with the same parameters is a fixed point and
re-applying with new parameters leaves exactly one, updated, instance of each.
Text outside the markers is never touched.
"""

import logging
import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from ..errors import TemplatePatchError
from ..tracker.config import INTERNAL_REQUEST_HEADER
from ..tracker.dom_binder import BinderConfig
from ..tracker.pixel_events import SOURCE_EVENTS
from .templates import BODY_TEMPLATE, HEAD_TEMPLATE, PIXEL_TEMPLATE, SNIPPET_TEMPLATE, renderer

logger = logging.getLogger(__name__)

THEME_LAYOUT_KEY = "layout/theme.liquid"
SNIPPET_KEY = "snippets/ultimate-datalayer.liquid"

HEAD_BEGIN = "<!-- ultimate-datalayer:head:begin -->"
HEAD_END = "<!-- ultimate-datalayer:head:end -->"
BODY_BEGIN = "<!-- ultimate-datalayer:body:begin -->"
BODY_END = "<!-- ultimate-datalayer:body:end -->"
DIRECTIVE = "{% render 'ultimate-datalayer' %}"

HEAD_OPEN_PATTERN = re.compile(r"<head\b[^>]*>", re.IGNORECASE)
HEAD_CLOSE_PATTERN = re.compile(r"</head\s*>", re.IGNORECASE)
BODY_OPEN_PATTERN = re.compile(r"<body\b[^>]*>", re.IGNORECASE)


def _block_pattern(begin: str, end: str) -> re.Pattern:
    # Interior content is irrelevant; the marker pair alone identifies a block
    return re.compile(r"\n?[ \t]*" + re.escape(begin) + r".*?" + re.escape(end), re.DOTALL)


HEAD_BLOCK_PATTERN = _block_pattern(HEAD_BEGIN, HEAD_END)
BODY_BLOCK_PATTERN = _block_pattern(BODY_BEGIN, BODY_END)
DIRECTIVE_PATTERN = re.compile(r"\n?[ \t]*\{%-?\s*render\s+'ultimate-datalayer'\s*-?%\}")
# Unmarked tags written by releases before blocks were introduced
LEGACY_TAG_PATTERN = re.compile(
    r"\n?[ \t]*\{%-?\s*render\s+'ultimate-datalayer',\s*part:\s*'(?:head|body)'\s*-?%\}",
    re.IGNORECASE,
)


class PatchParams(BaseModel):
    """Generation-time parameters baked into the blocks and scripts."""

    model_config = ConfigDict(frozen=True)

    gtm_id: Optional[str] = None
    event_prefix: str = ""
    item_id_format: Literal["formatted", "unformatted"] = "formatted"
    item_id_scope: str = "shopify"
    search_debounce_ms: int = 800
    country: str = "US"
    include_directive: bool = True

    def template_context(self) -> dict:
        binder = BinderConfig()
        return {
            "gtm_id": self.gtm_id,
            "event_prefix": self.event_prefix,
            "item_id_format": self.item_id_format,
            "item_id_scope": self.item_id_scope,
            "search_debounce_ms": self.search_debounce_ms,
            "country": self.country,
            "internal_header": INTERNAL_REQUEST_HEADER,
            "source_events": list(SOURCE_EVENTS),
            "selectors": {
                "actions": {
                    name: {"selectors": sorted(binding.selectors), "trigger": binding.trigger}
                    for name, binding in binder.actions.items()
                },
                "containers": list(binder.product_container_selectors),
                "lists": [binder.list_container_selector],
            },
        }


def render_head_block(params: PatchParams) -> str:
    return f"{HEAD_BEGIN}\n{renderer.render(HEAD_TEMPLATE, params.template_context())}\n{HEAD_END}"


def render_body_block(params: PatchParams) -> str:
    return f"{BODY_BEGIN}\n{renderer.render(BODY_TEMPLATE, params.template_context())}\n{BODY_END}"


def render_snippet(params: PatchParams) -> str:
    return renderer.render(SNIPPET_TEMPLATE, params.template_context()) + "\n"


def render_pixel_source(params: PatchParams) -> str:
    return renderer.render(PIXEL_TEMPLATE, params.template_context()) + "\n"


def strip(document: str) -> str:
    """
    Remove every block, directive and legacy render tag.

    Args:
        document: Layout text

    Returns:
        Layout text without any trace of the installation
    """
    cleaned = HEAD_BLOCK_PATTERN.sub("", document)
    cleaned = BODY_BLOCK_PATTERN.sub("", cleaned)
    cleaned = DIRECTIVE_PATTERN.sub("", cleaned)
    cleaned = LEGACY_TAG_PATTERN.sub("", cleaned)
    return cleaned


def _insert_after(document: str, pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(document)
    if match is None:
        return None
    return f"{document[:match.end()]}\n{text}{document[match.end():]}"


def insert_directive(document: str) -> str:
    """Place the render directive right after the head block, or before </head> when the block is absent."""
    end = document.find(HEAD_END)
    if end >= 0:
        end += len(HEAD_END)
        return f"{document[:end]}\n{DIRECTIVE}{document[end:]}"
    close = HEAD_CLOSE_PATTERN.search(document)
    if close is None:
        raise TemplatePatchError(f"{THEME_LAYOUT_KEY} has no place for the render directive")
    return f"{document[:close.start()]}{DIRECTIVE}\n{document[close.start():]}"


def patch(document: str, params: PatchParams) -> str:
    """
    Install or update the blocks in a layout document.

    Args:
        document: Current layout text
        params: Generation-time parameters

    Returns:
        Patched layout text (equal to the input when already up to date)

    Raises:
        TemplatePatchError: If the layout has no opening <head> or <body> tag
    """
    if HEAD_OPEN_PATTERN.search(document) is None:
        raise TemplatePatchError(f"{THEME_LAYOUT_KEY} has no <head> tag")
    if BODY_OPEN_PATTERN.search(document) is None:
        raise TemplatePatchError(f"{THEME_LAYOUT_KEY} has no <body> tag")

    patched = strip(document)
    patched = _insert_after(patched, HEAD_OPEN_PATTERN, render_head_block(params))
    patched = _insert_after(patched, BODY_OPEN_PATTERN, render_body_block(params))

    if params.include_directive:
        patched = insert_directive(patched)

    if patched == document:
        logger.debug("Layout already up to date")
    return patched
