import logging

import tinycss2
from tinycss2.serializer import serialize_identifier

from iframe_proxy.errors import RewriteFailure
from iframe_proxy.urls import RewriteContext, to_proxied

logger = logging.getLogger("uvicorn.error")

_INSIGNIFICANT = ("whitespace", "comment")
# Stray closers are kept verbatim; only bad-url and bad-string tokens lose data
_UNMATCHED_CLOSERS = (")", "]", "}")
_BLOCK_DELIMITERS = {
    "() block": ("(", ")"),
    "[] block": ("[", "]"),
    "{} block": ("{", "}"),
}


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\a ")
    )
    return f"'{escaped}'"


class _CssUrlWriter:
    """Re-serializes a tinycss2 component list, translating every URL it meets."""

    def __init__(self, ctx: RewriteContext):
        self.ctx = ctx
        self.out: list[str] = []
        self.changed = 0

    def _translate(self, value: str) -> str | None:
        rewritten = to_proxied(value, self.ctx)
        if rewritten == value:
            return None
        self.changed += 1
        return rewritten

    def write(self, nodes) -> None:
        previous = None
        for node in nodes:
            self._write_node(node, previous)
            if node.type not in _INSIGNIFICANT:
                previous = node

    def _write_node(self, node, previous) -> None:
        kind = node.type
        if kind == "error":
            if node.kind in _UNMATCHED_CLOSERS:
                self.out.append(node.serialize())
                return
            raise RewriteFailure(f"CSS parse error: {node.message}")

        if kind == "url":
            rewritten = self._translate(node.value)
            self.out.append(
                f"url({_quote(rewritten)})" if rewritten else node.serialize()
            )
        elif kind == "function" and node.lower_name == "url":
            args = [a for a in node.arguments if a.type not in _INSIGNIFICANT]
            rewritten = None
            if len(args) == 1 and args[0].type == "string":
                rewritten = self._translate(args[0].value)
            self.out.append(
                f"url({_quote(rewritten)})" if rewritten else node.serialize()
            )
        elif (
            kind == "string"
            and previous is not None
            and previous.type == "at-keyword"
            and previous.lower_value == "import"
        ):
            rewritten = self._translate(node.value)
            self.out.append(_quote(rewritten) if rewritten else node.serialize())
        elif kind == "function":
            self.out.append(f"{serialize_identifier(node.name)}(")
            self.write(node.arguments)
            self.out.append(")")
        elif kind in _BLOCK_DELIMITERS:
            opening, closing = _BLOCK_DELIMITERS[kind]
            self.out.append(opening)
            self.write(node.content)
            self.out.append(closing)
        else:
            self.out.append(node.serialize())


def rewrite_css(css: str, ctx: RewriteContext) -> str:
    """
    Rewrite ``url(...)`` references and ``@import "..."`` strings in a stylesheet
    or declaration list. Raises RewriteFailure on malformed url or string
    tokens; returns the input untouched when it contains nothing to rewrite.
    """
    if "url(" not in css.lower() and "@import" not in css.lower():
        return css

    nodes = tinycss2.parse_component_value_list(css, skip_comments=False)
    writer = _CssUrlWriter(ctx)
    writer.write(nodes)
    if not writer.changed:
        return css
    logger.debug(f"[Rewrite] Rewrote {writer.changed} CSS URL(s)")
    return "".join(writer.out)
