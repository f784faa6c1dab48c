"""
Minimal XML builder based on string templating.

Documents are assembled as a small element tree (create element, set
attribute, append child, serialize) and serialized without touching a DOM
implementation. lxml is only used afterwards to verify well-formedness.
"""
import re
from typing import Dict, List, Optional, Union

# Characters that may not appear anywhere in an XML 1.0 document
XML_ILLEGAL_CHARS = re.compile(
    '[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\ud800-\udfff\ufffe\uffff]'
)

VOID_ELEMENTS = frozenset({'br', 'hr', 'img', 'col', 'wbr', 'meta', 'link'})
"""XHTML elements that never carry content and are always self-closed"""

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
XHTML_DOCTYPE = '<!DOCTYPE html>'


def strip_illegal_xml_chars(text: str) -> str:
    """Remove control characters that XML 1.0 forbids."""
    if not text:
        return ""
    return XML_ILLEGAL_CHARS.sub('', text)


def escape_text(text) -> str:
    """Escape character data for use between tags."""
    if text is None:
        return ""
    text = strip_illegal_xml_chars(str(text))
    return text.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')


def escape_attr(value) -> str:
    """Escape an attribute value for use inside double quotes."""
    return escape_text(value).replace('"', '&quot;')


class XmlElement:
    """An element node of the builder tree."""

    def __init__(self, tag: str, attrs: Optional[Dict[str, object]] = None):
        self.tag = tag
        self.attributes: Dict[str, str] = {}
        self.children: List[Union['XmlElement', str]] = []
        for name, value in (attrs or {}).items():
            self.set(name, value)

    def set(self, name: str, value) -> 'XmlElement':
        """Set an attribute. None removes it."""
        if value is None:
            self.attributes.pop(name, None)
        else:
            self.attributes[name] = str(value)
        return self

    def append(self, child: Union['XmlElement', str]) -> Union['XmlElement', str]:
        """Append a child node and return it."""
        if child is None:
            return child
        self.children.append(child)
        return child

    def text(self, text) -> 'XmlElement':
        """Append a text node."""
        if text is not None and text != "":
            self.children.append(str(text))
        return self

    def element(self, tag: str, attrs: Optional[Dict[str, object]] = None, text=None) -> 'XmlElement':
        """Create a child element, append it and return it."""
        child = XmlElement(tag, attrs)
        if text is not None:
            child.text(text)
        self.children.append(child)
        return child

    def serialize(self, xhtml: bool = True) -> str:
        """Serialize the subtree.

        Args:
            xhtml: In XHTML mode only void elements are self-closed, empty
                non-void elements get an explicit end tag. Otherwise every
                empty element is self-closed.
        """
        attrs = ''.join(
            f' {name}="{escape_attr(value)}"' for name, value in self.attributes.items()
        )
        is_void = self.tag in VOID_ELEMENTS if xhtml else not self.children
        if is_void:
            return f'<{self.tag}{attrs}/>'

        parts = [f'<{self.tag}{attrs}>']
        for child in self.children:
            if isinstance(child, str):
                parts.append(escape_text(child))
            else:
                parts.append(child.serialize(xhtml))
        parts.append(f'</{self.tag}>')
        return ''.join(parts)


def serialize_document(root: XmlElement, xhtml: bool = True, doctype: Optional[str] = None) -> str:
    """Serialize a full document with the XML declaration.

    Args:
        root: Root element
        xhtml: Serialization mode (see XmlElement.serialize)
        doctype: Optional doctype line emitted after the declaration
    """
    lines = [XML_DECLARATION]
    if doctype:
        lines.append(doctype)
    lines.append(root.serialize(xhtml))
    return '\n'.join(lines) + '\n'
