"""Assessment report assembly from the latest assistant answer.

Pure functions: heading/link extraction, markdown rendering and picking the
report's text and evidence attachments out of a message list.
"""

import html
import re

from pydantic import BaseModel, Field

from src.models.schemas import FilePart, ImagePart, NormalizedMessage

HEADING_RE = re.compile(r"^(#{1,3})\s+(.+?)\s*$", re.MULTILINE)
LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")

_BLOCK_LINE = re.compile(r"^\s*</?(h[1-6]|ul|ol|li|table|thead|tbody|tr|th|td|hr|pre)\b")
_TABLE_SEPARATOR = re.compile(r"^\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?$")


class Heading(BaseModel):
    level: int
    text: str
    id: str


class ReferenceLink(BaseModel):
    label: str
    href: str


class Report(BaseModel):
    """Everything the report view renders.

    Attributes:
        message_id: Assistant message the report is built from.
        text: Markdown body (all text parts of that message, concatenated).
        headings: Table of contents entries.
        links: Deduplicated external references.
        attachments: Evidence images and files.
    """

    message_id: str
    text: str = ""
    headings: list[Heading] = Field(default_factory=list)
    links: list[ReferenceLink] = Field(default_factory=list)
    attachments: list[ImagePart | FilePart] = Field(default_factory=list)


def slugify(text: str = "") -> str:
    """Anchor id for a heading."""
    slug = re.sub(r"[^a-z0-9\s-]", "", text.lower()).strip()
    return re.sub(r"\s+", "-", slug)[:80]


def extract_headings(markdown: str = "") -> list[Heading]:
    return [
        Heading(level=len(m.group(1)), text=m.group(2).strip(), id=slugify(m.group(2).strip()))
        for m in HEADING_RE.finditer(markdown)
    ]


def extract_links(markdown: str = "") -> list[ReferenceLink]:
    """External links in first-seen order, one per href."""
    seen: set[str] = set()
    links = []
    for m in LINK_RE.finditer(markdown):
        label, href = m.group(1), m.group(2)
        if href in seen:
            continue
        seen.add(href)
        links.append(ReferenceLink(label=label, href=href))
    return links


def _render_table(rows: list[str]) -> list[str]:
    def cells(row: str) -> list[str]:
        return [c.strip() for c in row.strip().strip("|").split("|")]

    out = ['<table class="report-table">', "<thead>", "<tr>"]
    out.extend(f"<th>{c}</th>" for c in cells(rows[0]))
    out.extend(["</tr>", "</thead>", "<tbody>"])
    for row in rows[2:]:
        out.append("<tr>")
        out.extend(f"<td>{c}</td>" for c in cells(row))
        out.append("</tr>")
    out.extend(["</tbody>", "</table>"])
    return out


def _tables(text: str) -> str:
    lines = text.split("\n")
    result: list[str] = []
    i = 0
    while i < len(lines):
        if (
            lines[i].strip().startswith("|")
            and i + 1 < len(lines)
            and _TABLE_SEPARATOR.match(lines[i + 1].strip())
        ):
            block = [lines[i], lines[i + 1]]
            i += 2
            while i < len(lines) and lines[i].strip().startswith("|"):
                block.append(lines[i])
                i += 1
            result.extend(_render_table(block))
            continue
        result.append(lines[i])
        i += 1
    return "\n".join(result)


def _lists(text: str, pattern: str, tag: str, classes: str) -> str:
    lines = text.split("\n")
    in_list = False
    result = []
    for line in lines:
        stripped = line.strip()
        if re.match(pattern, stripped):
            if not in_list:
                result.append(f'<{tag} class="{classes}">')
                in_list = True
            item = re.sub(pattern, "", stripped)
            result.append(f"<li>{item}</li>")
        else:
            if in_list:
                result.append(f"</{tag}>")
                in_list = False
            result.append(line)
    if in_list:
        result.append(f"</{tag}>")
    return "\n".join(result)


def markdown_to_html(text: str) -> str:
    """Convert markdown to HTML for the report body.

    Supports: headings with anchor ids, bold, italic, inline code, code
    blocks, links, lists, tables, horizontal rules.
    """
    # Escape HTML entities first
    text = html.escape(text, quote=False)

    # Code is stashed so later rules leave it alone
    stash: list[str] = []

    def keep(fragment: str) -> str:
        stash.append(fragment)
        return f"\x00{len(stash) - 1}\x00"

    # Code blocks (```code```)
    text = re.sub(
        r"```(\w*)\n?([\s\S]*?)```",
        lambda m: keep(f'<pre class="report-code"><code>{m.group(2)}</code></pre>'),
        text,
    )

    # Inline code (`code`)
    text = re.sub(r"`([^`]+)`", lambda m: keep(f"<code>{m.group(1)}</code>"), text)

    # Headings; ids match extract_headings on the raw text
    def heading(m: re.Match[str]) -> str:
        level = len(m.group(1))
        content = m.group(2).strip()
        anchor = slugify(html.unescape(content))
        return f'<h{level} id="{anchor}">{content}</h{level}>'

    text = re.sub(r"^(#{1,6})\s+(.+?)\s*#*\s*$", heading, text, flags=re.MULTILINE)

    # Horizontal rules
    text = re.sub(r"^\s*(?:-{3,}|\*{3,}|_{3,})\s*$", "<hr>", text, flags=re.MULTILINE)

    # Bold (**text** or __text__)
    text = re.sub(r"\*\*(.+?)\*\*", r"<strong>\1</strong>", text)
    text = re.sub(r"__(.+?)__", r"<strong>\1</strong>", text)

    # Italic (*text* or _text_)
    text = re.sub(r"(?<![\*\w])\*([^*\n]+)\*(?!\w)", r"<em>\1</em>", text)
    text = re.sub(r"(?<!\w)_([^_\n]+)_(?!\w)", r"<em>\1</em>", text)

    # Links [text](url)
    text = re.sub(
        r"\[([^\]]+)\]\(([^)\s]+)\)",
        r'<a href="\2" target="_blank" rel="noreferrer">\1</a>',
        text,
    )

    text = _tables(text)
    text = _lists(text, r"^[-*]\s+", "ul", "report-list")
    text = _lists(text, r"^\d+\.\s+", "ol", "report-list")

    # Line breaks, except around block elements
    lines = text.split("\n")
    text = "".join(line if _BLOCK_LINE.match(line) else f"{line}<br>" for line in lines)

    return re.sub(r"\x00(\d+)\x00", lambda m: stash[int(m.group(1))], text)


def _report_text(message: NormalizedMessage) -> str:
    return "".join(message.text_parts())


def build_report(messages: list[NormalizedMessage]) -> Report | None:
    """Build the report from the last assistant message.

    Evidence attachments are the answer's own images/files followed by those
    of the user message that prompted it, one entry per file id.

    Returns:
        Report, or None when there is no assistant message yet.
    """
    index = next(
        (i for i in range(len(messages) - 1, -1, -1) if messages[i].role == "assistant"),
        None,
    )
    if index is None:
        return None

    answer = messages[index]
    prompt = next(
        (messages[i] for i in range(index - 1, -1, -1) if messages[i].role == "user"),
        None,
    )

    attachments: list[ImagePart | FilePart] = []
    seen: set[str | None] = set()
    candidates = answer.attachment_parts() + (prompt.attachment_parts() if prompt else [])
    for part in candidates:
        if part.file_id is None or part.file_id in seen:
            continue
        seen.add(part.file_id)
        attachments.append(part)

    text = _report_text(answer)
    return Report(
        message_id=answer.id,
        text=text,
        headings=extract_headings(text),
        links=extract_links(text),
        attachments=attachments,
    )
