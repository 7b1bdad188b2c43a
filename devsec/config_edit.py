"""Structured edits of device config files: properties, JSON and XML."""
import json
import re
import xml.etree.ElementTree as ET

from typing import Any, Callable, Dict, Optional, Tuple

from devsec.errors import ConfigFormatError

SUPPORTED_FORMATS = ("properties", "json", "xml")

_XML_DECL_RE = re.compile(r"^\s*(<\?xml[^>]*\?>)")
# Tag names we are willing to create: an XML NCName restricted to ASCII.
_XML_NAME_RE = re.compile(r"^[A-Za-z_][\w.\-]*$", re.ASCII)


def _property_key(line: str) -> Optional[str]:
    stripped = line.strip()
    if not stripped or stripped.startswith(("#", "!")) or "=" not in stripped:
        return None
    return stripped.split("=", 1)[0].strip()


def edit_properties(content: str, key: str, value: Any) -> Tuple[str, Optional[str]]:
    """Set ``key=value``, replacing existing lines for *key* or appending one."""
    for label, text in (("key", key), ("value", str(value))):
        if "\n" in text or "\r" in text:
            raise ConfigFormatError(f"Property {label} must be a single line: {text!r}")
    if "=" in key:
        raise ConfigFormatError(f"Property key must not contain '=': {key!r}")
    lines = content.split("\n")
    original = None
    found = False
    for i, line in enumerate(lines):
        if _property_key(line) == key:
            if not found:
                original = line.split("=", 1)[1].strip()
            lines[i] = f"{key}={value}"
            found = True
    if not found:
        if lines and lines[-1] == "":
            lines.insert(len(lines) - 1, f"{key}={value}")
        else:
            lines.append(f"{key}={value}")
    return "\n".join(lines), original


def _load_json(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigFormatError(f"Invalid JSON content: {e}") from e


def edit_json(content: str, key: str, value: Any) -> Tuple[str, Any]:
    """Set a value at a dotted key path (``security.level``), creating objects on the way."""
    data = _load_json(content)
    if not isinstance(data, dict):
        raise ConfigFormatError("JSON config root must be an object")
    parts = key.split(".")
    if not all(parts):
        raise ConfigFormatError(f"Invalid JSON key path '{key}'")
    current = data
    for part in parts[:-1]:
        nxt = current.get(part)
        if nxt is None:
            nxt = {}
            current[part] = nxt
        elif not isinstance(nxt, dict):
            raise ConfigFormatError(f"Cannot descend into non-object at '{part}' in key path '{key}'")
        current = nxt
    original = current.get(parts[-1])
    current[parts[-1]] = value
    return json.dumps(data, indent=2), original


def _parse_xml(content: str) -> ET.Element:
    try:
        return ET.fromstring(content)
    except ET.ParseError as e:
        raise ConfigFormatError(f"Invalid XML content: {e}") from e


def _find_xml_target(root: ET.Element, key: str) -> Optional[ET.Element]:
    # Plain <key>value</key> elements first, then Android shared_prefs
    # style <string name="key">value</string>.
    if _XML_NAME_RE.fullmatch(key):
        element = next(root.iter(key), None)
        if element is not None:
            return element
    for element in root.iter():
        if element.get("name") == key:
            return element
    return None


def edit_xml(content: str, key: str, value: Any) -> Tuple[str, Optional[str]]:
    root = _parse_xml(content)
    target = _find_xml_target(root, key)
    original = None
    if target is None:
        if not _XML_NAME_RE.fullmatch(key):
            raise ConfigFormatError(f"'{key}' is not a valid XML element name")
        element = ET.SubElement(root, key)
        element.text = str(value)
    elif "value" in target.attrib:
        original = target.get("value")
        target.set("value", str(value))
    else:
        original = target.text
        target.text = str(value)
    body = ET.tostring(root, encoding="unicode")
    decl = _XML_DECL_RE.match(content)
    if decl:
        body = f"{decl.group(1)}\n{body}"
    return body, original


_EDITORS: Dict[str, Callable[[str, str, Any], Tuple[str, Any]]] = {
    "properties": edit_properties,
    "json": edit_json,
    "xml": edit_xml,
}


def apply_edit(content: str, key: str, value: Any, fmt: str) -> Tuple[str, Any]:
    """Return ``(new_content, original_value)`` for *fmt*.

    Raises ``ConfigFormatError`` for unsupported formats or malformed content.
    """
    if not key:
        raise ConfigFormatError("Config key must not be empty")
    editor = _EDITORS.get((fmt or "").lower())
    if editor is None:
        raise ConfigFormatError(
            f"Unsupported config format '{fmt}'. Supported: {', '.join(SUPPORTED_FORMATS)}"
        )
    return editor(content, key, value)


def read_value(content: str, key: str, fmt: str) -> Any:
    """Current value of *key* without editing, or ``None`` when the key is absent.

    Malformed content and unsupported formats raise ``ConfigFormatError``,
    the same as ``apply_edit``.
    """
    fmt = (fmt or "").lower()
    if not key:
        raise ConfigFormatError("Config key must not be empty")
    if fmt == "properties":
        for line in content.split("\n"):
            if _property_key(line) == key:
                return line.split("=", 1)[1].strip()
        return None
    if fmt == "json":
        current = _load_json(content)
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return None
            current = current[part]
        return current
    if fmt == "xml":
        target = _find_xml_target(_parse_xml(content), key)
        if target is None:
            return None
        return target.get("value") if "value" in target.attrib else target.text
    raise ConfigFormatError(
        f"Unsupported config format '{fmt}'. Supported: {', '.join(SUPPORTED_FORMATS)}"
    )
