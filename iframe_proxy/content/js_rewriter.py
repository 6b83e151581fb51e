import re

from iframe_proxy.urls import RewriteContext, to_proxied

# Only quoted absolute URLs; bare paths inside script logic are left to the
# client reinforcement script, which sees them at call time.
ABSOLUTE_URL_LITERAL_RE = re.compile(
    r"""(?P<quote>["'`])(?P<url>https?://[^"'`\s\\<>]+)(?P=quote)"""
)


def rewrite_js(script: str, ctx: RewriteContext) -> str:
    def _replace(match: re.Match) -> str:
        quote = match.group("quote")
        rewritten = to_proxied(match.group("url"), ctx)
        return f"{quote}{rewritten}{quote}"

    return ABSOLUTE_URL_LITERAL_RE.sub(_replace, script)
