"""
Jinja2 rendering of the installable theme blocks and scripts.

The templates emit Liquid, so Jinja2 runs with square-bracket delimiters
(``[[ value ]]``, ``[% if %]``) and leaves every ``{{ }}``/``{% %}`` for the
storefront to evaluate.
"""

import logging
from typing import Any, Dict

from jinja2 import Environment, PackageLoader, StrictUndefined

logger = logging.getLogger(__name__)

HEAD_TEMPLATE = "head_block.liquid.j2"
BODY_TEMPLATE = "body_block.liquid.j2"
SNIPPET_TEMPLATE = "snippet.liquid.j2"
PIXEL_TEMPLATE = "checkout_pixel.js.j2"


class TemplateRenderer:
    """Renders package templates with generation-time parameters."""

    def __init__(self):
        # Missing variables are errors, never empty strings
        self.jinja_env = Environment(
            loader=PackageLoader("datalayer_agent.deployment", "templates"),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=False,
            block_start_string="[%",
            block_end_string="%]",
            variable_start_string="[[",
            variable_end_string="]]",
            comment_start_string="[#",
            comment_end_string="#]",
        )

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self.jinja_env.get_template(template_name)
        rendered = template.render(**context)
        logger.debug(f"Rendered {template_name} ({len(rendered)} chars)")
        return rendered.strip("\n")


renderer = TemplateRenderer()
