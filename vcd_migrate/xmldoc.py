"""XML codec and tree helpers for vCD documents.

Documents are parsed with ``xmltodict`` into plain mappings with namespace
prefixes normalized: elements of the core vCloud namespace carry no prefix,
extension elements carry ``vmext:``. The helpers below always return new
mappings so rewrite functions can be written without mutating their input.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import xmltodict

VCLOUD_NS = "http://www.vmware.com/vcloud/v1.5"
EXTENSION_NS = "http://www.vmware.com/vcloud/extension/v1.5"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

_NAMESPACES = {VCLOUD_NS: None, EXTENSION_NS: "vmext", XSI_NS: "xsi"}
_PREFIXES = {"vmext": EXTENSION_NS, "xsi": XSI_NS}

# Server-assigned identity that must never be replayed to another instance
IDENTITY_KEYS = ("@href", "@id", "@type", "Link", "Tasks")


def parse_document(content: bytes | str) -> dict[str, Any]:
    """Parse an XML document into a namespace-normalized mapping.

    Args:
        content: Raw XML text or bytes.

    Returns:
        Mapping with a single root key.
    """
    document = xmltodict.parse(
        content,
        process_namespaces=True,
        namespaces=_NAMESPACES,
    )
    return _drop_declarations(document)


def serialize_document(document: Mapping[str, Any]) -> str:
    """Serialize a mapping produced by :func:`parse_document` back to XML.

    Namespace declarations are re-added on the root element for the core
    namespace and for every prefix used anywhere in the tree.
    """
    root_tag, body = next(iter(document.items()))
    declarations = {"@xmlns": VCLOUD_NS}
    for prefix in sorted(_used_prefixes(document)):
        declarations[f"@xmlns:{prefix}"] = _PREFIXES[prefix]

    if isinstance(body, Mapping):
        root = {**declarations, **{k: v for k, v in body.items() if k not in declarations}}
    elif body is None:
        root = declarations
    else:
        root = {**declarations, "#text": body}

    return xmltodict.unparse({root_tag: root}, full_document=True)


def _drop_declarations(node: Any) -> Any:
    # xmltodict reports xmlns declarations as an "@xmlns" attribute mapping
    if isinstance(node, Mapping):
        kept = {
            key: _drop_declarations(value)
            for key, value in node.items()
            if key != "@xmlns"
        }
        # An element carrying nothing but declarations is empty
        if not kept and "@xmlns" in node:
            return None
        return kept
    if isinstance(node, list):
        return [_drop_declarations(item) for item in node]
    return node


def _used_prefixes(node: Any) -> set[str]:
    found: set[str] = set()
    if isinstance(node, Mapping):
        for key, value in node.items():
            name = key.lstrip("@")
            if ":" in name:
                prefix = name.split(":", 1)[0]
                if prefix in _PREFIXES:
                    found.add(prefix)
            found |= _used_prefixes(value)
    elif isinstance(node, list):
        for item in node:
            found |= _used_prefixes(item)
    return found


def as_list(value: Any) -> list[Any]:
    """Normalize an element that may occur zero, one or many times."""
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


def text_of(value: Any) -> str | None:
    """Return the text content of an element, with or without attributes."""
    if isinstance(value, Mapping):
        return value.get("#text")
    return value


def is_true(value: Any) -> bool:
    """Interpret an xsd:boolean element."""
    text = text_of(value)
    return text is not None and text.strip().lower() == "true"


def xml_bool(flag: bool) -> str:
    return "true" if flag else "false"


def child(node: Any, key: str) -> Any:
    """Return ``node[key]`` when ``node`` is a mapping, else None."""
    if isinstance(node, Mapping):
        return node.get(key)
    return None


def without(mapping: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    """Copy of ``mapping`` without ``keys``, order preserved."""
    return {k: v for k, v in mapping.items() if k not in keys}


def replace(mapping: Mapping[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``mapping`` with ``updates`` applied.

    Existing keys keep their position; new keys are appended in order.
    """
    merged = {k: updates.get(k, v) for k, v in mapping.items()}
    for key, value in updates.items():
        if key not in merged:
            merged[key] = value
    return merged


def insert_after(
    mapping: Mapping[str, Any], anchor: str, key: str, value: Any
) -> dict[str, Any]:
    """Copy of ``mapping`` with ``key`` placed immediately after ``anchor``.

    Raises:
        KeyError: If ``anchor`` is not present.
    """
    if anchor not in mapping:
        raise KeyError(anchor)
    result: dict[str, Any] = {}
    for existing_key, existing_value in mapping.items():
        if existing_key == key:
            continue
        result[existing_key] = existing_value
        if existing_key == anchor:
            result[key] = value
    return result


def pick(mapping: Mapping[str, Any], keys: Iterable[str]) -> dict[str, Any]:
    """Copy of the listed keys present in ``mapping``, in the listed order."""
    return {key: mapping[key] for key in keys if key in mapping}


def with_text(node: Any, text: str) -> Any:
    """Replace the text of an element, keeping its attributes."""
    if isinstance(node, Mapping):
        return replace(node, {"#text": text})
    return text


def strip_identity(body: Mapping[str, Any], *extra: str) -> dict[str, Any]:
    """Drop server-assigned identity from the top level of a document body."""
    return without(body, *IDENTITY_KEYS, *extra)


def strip_links(node: Any) -> Any:
    """Recursively drop ``Link`` elements and ``@href``/``@id`` attributes."""
    if isinstance(node, Mapping):
        return {
            key: strip_links(value)
            for key, value in node.items()
            if key not in ("Link", "@href", "@id", "@type")
        }
    if isinstance(node, list):
        return [strip_links(item) for item in node]
    return node


def reference(href: str, name: str, media_type: str | None = None) -> dict[str, str]:
    """Build a ``{@href, @name, @type}`` reference element."""
    ref = {"@href": href, "@name": name}
    if media_type:
        ref["@type"] = media_type
    return ref
