"""
Allow-list conversion of translated HTML into strict XHTML.

Translated chapter bodies arrive as loose HTML or plain text. They are parsed
with lxml's forgiving HTML parser and re-emitted through the XML builder so
the result is always well-formed:

- allow-listed elements are kept with a safe subset of their attributes
- any other element is escaped to visible text (its children are kept)
- event handler attributes are dropped, unsafe style values are rejected
- javascript:/vbscript: links are dropped
- void elements are self-closed, XML-illegal characters are stripped

Placement markers are swapped for private-use tokens by the caller before
sanitizing. The walker splits text nodes on those tokens and asks a handler
for the replacement node (an illustration block, a footnote reference).
"""
import re
from typing import Callable, List, Optional, Union

from lxml import etree
import lxml.html

from .xml_builder import (
    XmlElement,
    VOID_ELEMENTS,
    strip_illegal_xml_chars,
)

ALLOWED_ELEMENTS = frozenset({
    # Headings and paragraphs
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'p', 'div', 'span', 'blockquote', 'pre',
    # Inline emphasis
    'em', 'strong', 'i', 'b', 'u', 's', 'sub', 'sup', 'small', 'mark', 'code',
    'abbr', 'cite', 'q', 'ruby', 'rt', 'rp',
    # Lists
    'ul', 'ol', 'li', 'dl', 'dt', 'dd',
    # Tables
    'table', 'thead', 'tbody', 'tfoot', 'tr', 'th', 'td', 'caption', 'colgroup', 'col',
    # Sectioning
    'section', 'article', 'aside', 'header', 'footer', 'nav', 'figure', 'figcaption',
    # Media, links, breaks
    'img', 'a', 'br', 'hr',
})

GLOBAL_ATTRIBUTES = frozenset({'id', 'class', 'title', 'lang', 'dir', 'style', 'xml:lang'})

ELEMENT_ATTRIBUTES = {
    'a': frozenset({'href'}),
    'img': frozenset({'src', 'alt', 'width', 'height'}),
    'td': frozenset({'colspan', 'rowspan'}),
    'th': frozenset({'colspan', 'rowspan', 'scope'}),
    'col': frozenset({'span'}),
    'colgroup': frozenset({'span'}),
    'ol': frozenset({'start', 'reversed'}),
    'li': frozenset({'value'}),
    'blockquote': frozenset({'cite'}),
    'q': frozenset({'cite'}),
}

URI_ATTRIBUTES = frozenset({'href', 'src', 'cite'})

# Elements whose presence means the body is already structured markup
BLOCK_TAG_PATTERN = re.compile(
    r'<\s*(p|div|h[1-6]|ul|ol|dl|table|blockquote|section|article|aside|header|'
    r'footer|nav|figure|pre|hr)\b',
    re.IGNORECASE
)

UNSAFE_STYLE_PATTERN = re.compile(
    r'javascript:|expression\s*\(|behavior\s*:|-moz-binding|@import',
    re.IGNORECASE
)

UNSAFE_URI_PATTERN = re.compile(r'^(javascript|vbscript):', re.IGNORECASE)

XML_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9._:-]*$')

# Private-use delimiters for substitution tokens
TOKEN_START = '\ue000'
TOKEN_END = '\ue001'
TOKEN_PATTERN = re.compile(f'{TOKEN_START}([A-Za-z0-9_-]+){TOKEN_END}')
_TOKEN_CHARS = re.compile(f'[{TOKEN_START}{TOKEN_END}]')

Node = Union[XmlElement, str]
TokenHandler = Callable[[str], Optional[Node]]

# Replacements that may stand in for a whole paragraph
BLOCK_REPLACEMENTS = frozenset({'figure', 'div', 'aside', 'section'})

# Elements limited to phrasing content; block children split them in two
PHRASING_ONLY_ELEMENTS = frozenset({
    'p', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'span', 'a',
    'em', 'strong', 'i', 'b', 'u', 's', 'sub', 'sup', 'small', 'mark', 'code',
    'abbr', 'cite', 'q',
})


def make_token(key: str) -> str:
    """Build a substitution token that survives HTML parsing."""
    return f"{TOKEN_START}{key}{TOKEN_END}"


def strip_tokens(text: str) -> str:
    """Remove stray token delimiters (e.g. already present in source text)."""
    return _TOKEN_CHARS.sub('', text or '')


def looks_like_plain_text(content: str) -> bool:
    """True when the content carries no block-level markup."""
    return not BLOCK_TAG_PATTERN.search(content or '')


def text_to_html(text: str) -> str:
    """Convert newline-separated text into paragraphs.

    Blank lines separate paragraphs, single newlines become line breaks.
    Inline markup already present in the text is left for the parser.
    """
    text = (text or '').replace('\r\n', '\n').replace('\r', '\n')
    paragraphs = [p.strip() for p in re.split(r'\n\s*\n', text) if p.strip()]
    return ''.join(
        '<p>' + '<br/>'.join(line.strip() for line in para.split('\n')) + '</p>'
        for para in paragraphs
    )


def clean_attribute(tag: str, name: str, value: str) -> Optional[tuple]:
    """Return the (name, value) pair to keep, or None to drop the attribute."""
    if not XML_NAME_PATTERN.match(name or ''):
        return None
    if ':' not in name:
        name = name.lower()
    if name.startswith('on') or name.startswith('xmlns'):
        return None

    allowed = (
        name in GLOBAL_ATTRIBUTES
        or name in ELEMENT_ATTRIBUTES.get(tag, ())
        or name.startswith('epub:')
    )
    if not allowed:
        return None

    value = strip_illegal_xml_chars(strip_tokens(value or ''))

    if name == 'style':
        if UNSAFE_STYLE_PATTERN.search(value):
            return None
        value = value.strip()
        if not value:
            return None

    if name in URI_ATTRIBUTES:
        # Browsers ignore whitespace and control characters inside the scheme
        compact = re.sub(r'[\s\x00-\x1f]', '', value)
        if UNSAFE_URI_PATTERN.match(compact):
            return None

    return name, value


def _describe_tag(node: etree._Element, tag: str) -> str:
    attrs = ''.join(f' {name}="{strip_tokens(value)}"' for name, value in node.attrib.items())
    return f"<{tag}{attrs}>"


def _is_block(node) -> bool:
    return isinstance(node, XmlElement) and node.tag in BLOCK_REPLACEMENTS


def _trim_breaks(nodes: List[Node]) -> List[Node]:
    """Drop line breaks and blank text at both ends of a split segment."""
    def is_filler(n):
        return (isinstance(n, str) and not n.strip()) or (isinstance(n, XmlElement) and n.tag == 'br')

    start, end = 0, len(nodes)
    while start < end and is_filler(nodes[start]):
        start += 1
    while end > start and is_filler(nodes[end - 1]):
        end -= 1
    return nodes[start:end]


class XhtmlSanitizer:
    """Converts one HTML fragment into builder nodes."""

    def __init__(self, token_handler: Optional[TokenHandler] = None):
        self.token_handler = token_handler
        self.escaped_elements: List[str] = []

    def convert(self, html: str) -> List[Node]:
        """Parse and convert a fragment.

        Args:
            html: HTML fragment or plain text

        Returns:
            List of sibling nodes (elements and text)
        """
        if not html or not html.strip():
            return []

        if looks_like_plain_text(html):
            html = text_to_html(html)

        container = XmlElement('div')
        try:
            root = lxml.html.fragment_fromstring(html, create_parent='div')
        except (etree.ParserError, ValueError):
            # Unparseable input is kept as visible text
            paragraph = container.element('p')
            self._emit_text(html, paragraph)
            self._hoist_blocks(paragraph, container)
            return container.children

        self._convert_children(root, container)
        return container.children

    def _convert_children(self, src: etree._Element, dst: XmlElement) -> None:
        self._emit_text(src.text, dst)
        for child in src:
            self._convert_node(child, dst)
            self._emit_text(child.tail, dst)

    def _convert_node(self, node: etree._Element, dst: XmlElement) -> None:
        # Comments and processing instructions
        if not isinstance(node.tag, str):
            return

        tag = node.tag.lower()
        if tag == 'p' and self._unwrap_lone_token(node, dst):
            return

        if tag not in ALLOWED_ELEMENTS:
            self.escaped_elements.append(tag)
            dst.text(_describe_tag(node, tag))
            if tag not in VOID_ELEMENTS:
                self._convert_children(node, dst)
                dst.text(f"</{tag}>")
            return

        el = dst.element(tag)
        for name, value in node.attrib.items():
            cleaned = clean_attribute(tag, name, value)
            if cleaned:
                el.set(*cleaned)

        if tag == 'img' and 'alt' not in el.attributes:
            el.set('alt', '')

        if tag not in VOID_ELEMENTS:
            self._convert_children(node, el)
            self._hoist_blocks(el, dst)

    def _unwrap_lone_token(self, node: etree._Element, dst: XmlElement) -> bool:
        """Let a paragraph holding nothing but one token become its block replacement."""
        if self.token_handler is None or len(node):
            return False
        match = TOKEN_PATTERN.fullmatch((node.text or '').strip())
        if not match:
            return False

        replacement = self.token_handler(match.group(1))
        if isinstance(replacement, XmlElement) and replacement.tag not in BLOCK_REPLACEMENTS:
            dst.element('p').append(replacement)
        elif replacement is not None:
            dst.append(replacement)
        return True

    def _hoist_blocks(self, el: XmlElement, dst: XmlElement) -> None:
        """Split a phrasing-only element around block children.

        "<p>Before <figure/> after</p>" becomes
        "<p>Before </p><figure/><p> after</p>". Nested inline elements are
        split first, so the block reaches the paragraph as a direct child.
        """
        if el.tag not in PHRASING_ONLY_ELEMENTS or not any(_is_block(c) for c in el.children):
            return

        # el is the node most recently added to dst
        dst.children.pop()
        segments: List[Union[XmlElement, List[Node]]] = [[]]
        for child in el.children:
            if _is_block(child):
                segments.append(child)
                segments.append([])
            else:
                segments[-1].append(child)

        element_id = el.attributes.get('id')
        for segment in segments:
            if isinstance(segment, XmlElement):
                dst.append(segment)
                continue
            segment = _trim_breaks(segment)
            if not segment:
                continue
            part = dst.element(el.tag, {k: v for k, v in el.attributes.items() if k != 'id'})
            # The id stays on the first emitted segment only
            part.set('id', element_id)
            element_id = None
            for child in segment:
                part.append(child)

    def _emit_text(self, text: Optional[str], dst: XmlElement) -> None:
        if not text:
            return
        parts = TOKEN_PATTERN.split(text)
        # re.split alternates literal text and captured token keys
        for index, part in enumerate(parts):
            if index % 2 == 0:
                dst.text(strip_illegal_xml_chars(part))
            elif self.token_handler:
                replacement = self.token_handler(part)
                if replacement is not None:
                    dst.append(replacement)


def sanitize_html(html: str, token_handler: Optional[TokenHandler] = None) -> List[Node]:
    """Convert an HTML fragment into well-formed builder nodes."""
    return XhtmlSanitizer(token_handler).convert(html)

