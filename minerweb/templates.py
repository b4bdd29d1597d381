"""
minerweb - Template Engine
============================
Assembles HTML pages from reusable fragments by substituting named
variables of the form %KEY%.

A variable is a zero-argument callable, evaluated on every render, so a page
always shows the current miner state without the caller rebuilding the
variable set. Unknown keys are left in the output untouched.

Page assembly:
    The content fragment is rendered first with its own variables, then
    injected into the layout as %CONTENT%. Content variables therefore never
    reach sibling fragments.

Usage:
    loader = TemplateLoader("/path/to/templates")
    variables = TemplateVariables({"TITLE": lambda: "minerweb"})
    html = build_page(loader.load("layout.html"), loader.load("index.html"), variables)
"""

import os
import re
from typing import Callable, Mapping

from minerweb.errors import TemplateLoadError


Variable = Callable[[], str]


class TemplateVariables:
    """
    A set of named template variables.

    Adding two sets yields a new set containing the keys of both; on a key
    collision the right-hand operand wins.
    """

    def __init__(self, variables: Mapping[str, Variable] | None = None):
        self.variables: dict[str, Variable] = dict(variables or {})

    def __contains__(self, key: str) -> bool:
        return key in self.variables

    def __getitem__(self, key: str) -> Variable:
        return self.variables[key]

    def __len__(self) -> int:
        return len(self.variables)

    def __add__(self, other: "TemplateVariables") -> "TemplateVariables":
        return combine(self, other)

    def inject(self, source: str) -> str:
        """Replace every known %KEY% inside source with its current value."""
        if not self.variables:
            return source
        # Only known names are matched, so a stray % never hides a neighbouring key
        pattern = re.compile("%(" + "|".join(map(re.escape, self.variables)) + ")%")
        return pattern.sub(lambda match: str(self.variables[match.group(1)]()), source)


def combine(a: TemplateVariables, b: TemplateVariables) -> TemplateVariables:
    """Right-biased union of two variable sets."""
    merged = dict(a.variables)
    merged.update(b.variables)
    return TemplateVariables(merged)


def render(template: str, variables: TemplateVariables) -> str:
    return variables.inject(template)


def build_page(layout: str, content: str, variables: TemplateVariables) -> str:
    """
    Render a content fragment and embed it in a layout.

    Args:
        layout:    Layout template containing a %CONTENT% placeholder.
        content:   Content fragment template.
        variables: Variables available to both the layout and the content.

    Returns:
        The fully rendered page.
    """
    rendered_content = render(content, variables)
    page_vars = variables + TemplateVariables({"CONTENT": lambda: rendered_content})
    return render(layout, page_vars)


class TemplateLoader:
    """
    Reads template fragments from a directory.

    Attributes:
        directory: Absolute path of the template directory.
    """

    def __init__(self, directory: str):
        self.directory = directory

    def load(self, name: str) -> str:
        """
        Read one template file.

        Raises:
            TemplateLoadError: If the file is missing or unreadable.
        """
        path = os.path.join(self.directory, name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise TemplateLoadError(f"Cannot load template '{name}': {e}") from e
