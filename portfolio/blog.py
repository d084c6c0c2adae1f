from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Optional

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50
SNIPPET_CHARS = 200

POST_PROJECTION = """{
    _id,
    title,
    "slug": slug.current,
    mainImage,
    publishedAt,
    "tags": tags[]->{ _id, title, "slug": slug.current },
    bodyMarkdown,
    excerpt
  }"""

PROJECTS_QUERY = """*[_type == "project"] {
    _id,
    title,
    slug,
    mainImage,
    description,
    liveUrl,
    githubUrl,
    publishedAt
  }"""

_MARKDOWN_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"```.*?```", re.DOTALL), ""),
    (re.compile(r"`[^`]*`"), ""),
    (re.compile(r"!\[[^\]]*]\([^)]+\)"), ""),
    (re.compile(r"\[([^\]]*)]\([^)]+\)"), r"\1"),
    (re.compile(r"^\s{0,3}>\s?", re.MULTILINE), ""),
    (re.compile(r"(^|\s)[#>*_~\-]+"), " "),
    (re.compile(r"\n{2,}"), " "),
    (re.compile(r"\s+"), " "),
)


def strip_markdown(markdown: str) -> str:
    """Reduce markdown to readable plain text for list snippets."""
    if not markdown:
        return ""
    text = markdown
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def truncate_at_word(text: str, max_chars: int = SNIPPET_CHARS, ellipsis: str = "…") -> str:
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    sliced = text[: max(0, max_chars - 1)]
    last_space = sliced.rfind(" ")
    # Only back off to a word boundary when it does not gut the snippet.
    return (sliced[:last_space] if last_space > 40 else sliced) + ellipsis


def post_snippet(post: dict[str, Any]) -> str:
    excerpt = post.get("excerpt")
    if isinstance(excerpt, str) and excerpt.strip():
        base = excerpt.strip()
    else:
        body = post.get("bodyMarkdown")
        base = strip_markdown(body if isinstance(body, str) else "")
    return truncate_at_word(base, SNIPPET_CHARS, "…")


def _parse_int(raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(float(raw))
    except (ValueError, OverflowError):
        return default


@dataclass(frozen=True)
class PostSearch:
    offset: int = 0
    limit: int = DEFAULT_PAGE_SIZE
    q: str = ""
    tag_slugs: list[str] = field(default_factory=list)

    @classmethod
    def from_query(
        cls,
        offset: Optional[str] = None,
        limit: Optional[str] = None,
        q: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> "PostSearch":
        return cls(
            offset=max(0, _parse_int(offset, 0)),
            limit=min(MAX_PAGE_SIZE, max(1, _parse_int(limit, DEFAULT_PAGE_SIZE))),
            q=(q or "").strip(),
            tag_slugs=[slug.strip() for slug in (tags or "").split(",") if slug.strip()],
        )

    def filters(self) -> tuple[str, dict[str, Any]]:
        conditions = ['_type == "post"', "defined(publishedAt)"]
        params: dict[str, Any] = {}

        if self.q:
            # GROQ `match` is case-insensitive; wildcards give partial matches.
            params["q"] = f"*{self.q}*"
            conditions.append("(title match $q || bodyMarkdown match $q)")

        if self.tag_slugs:
            params["tagSlugs"] = list(self.tag_slugs)
            conditions.append("count(tags[@->slug.current in $tagSlugs]) > 0")

        return " && ".join(conditions), params

    def list_query(self) -> tuple[str, dict[str, Any]]:
        where, params = self.filters()
        end = self.offset + self.limit
        query = f"*[{where}] | order(publishedAt desc, _id desc) [{self.offset}...{end}] {POST_PROJECTION}"
        return query, params

    def count_query(self) -> tuple[str, dict[str, Any]]:
        where, params = self.filters()
        return f"count(*[{where}])", params


def _list_item(post: dict[str, Any]) -> dict[str, Any]:
    item = {**post, "snippet": post_snippet(post)}
    tags = post.get("tags")
    if isinstance(tags, list):
        # References to deleted tags dereference to null.
        item["tags"] = [tag for tag in tags if tag]
    return item


def build_page(search: PostSearch, posts: list[dict[str, Any]], total: int) -> dict[str, Any]:
    with_snippets = [_list_item(post) for post in posts]
    next_offset = search.offset + len(with_snippets)
    return {
        "posts": with_snippets,
        "next_offset": next_offset,
        "has_more": next_offset < total,
        "total": total,
    }


def tags_query(q: Optional[str] = None) -> tuple[str, dict[str, Any]]:
    term = (q or "").strip()
    params: dict[str, Any] = {}
    condition = ""
    if term:
        params["q"] = f"*{term}*"
        condition = " && title match $q"
    query = f'*[_type == "tag"{condition}] | order(title asc) {{ _id, title, "slug": slug.current }}'
    return query, params
