"""Unit tests for devsec/config_edit.py — properties, JSON and XML editors."""
import json
import xml.etree.ElementTree as ET

import pytest

from devsec.config_edit import apply_edit, read_value, edit_properties
from devsec.errors import ConfigFormatError


class TestProperties:
    def test_replace_existing(self):
        new, original = edit_properties("a=1\nb = 2\n", "b", "3")
        assert new == "a=1\nb=3\n"
        assert original == "2"

    def test_append_before_trailing_newline(self):
        new, original = edit_properties("a=1\n", "c", "x")
        assert new == "a=1\nc=x\n"
        assert original is None

    def test_comments_untouched(self):
        new, _ = edit_properties("# b=old\nb=1", "b", "2")
        assert new == "# b=old\nb=2"

    @pytest.mark.parametrize("key,value", [
        ("debug", "x\nro.debuggable=1"),
        ("debug", "x\rro.debuggable=1"),
        ("a\nb", "1"),
    ])
    def test_multiline_rejected(self, key, value):
        with pytest.raises(ConfigFormatError, match="single line"):
            edit_properties("debug=false\n", key, value)

    def test_key_with_separator_rejected(self):
        with pytest.raises(ConfigFormatError, match="must not contain"):
            edit_properties("a=1\n", "a=b", "2")


class TestJson:
    def test_creates_intermediate_objects(self):
        new, original = apply_edit('{"a": 1}', "x.y.z", True, "json")
        assert json.loads(new) == {"a": 1, "x": {"y": {"z": True}}}
        assert original is None

    def test_non_object_in_path(self):
        with pytest.raises(ConfigFormatError, match="non-object"):
            apply_edit('{"a": 1}', "a.b", 2, "json")

    def test_root_must_be_object(self):
        with pytest.raises(ConfigFormatError, match="root"):
            apply_edit("[1, 2]", "a", 2, "json")

    def test_typed_values_preserved(self):
        new, original = apply_edit('{"retries": 3}', "retries", 5, "json")
        assert original == 3
        assert json.loads(new)["retries"] == 5


class TestXml:
    def test_element_text(self):
        new, original = apply_edit("<config><level>high</level></config>", "level", "low", "xml")
        assert original == "high"
        assert "<level>low</level>" in new

    def test_named_entry_text(self):
        content = '<map><string name="token">abc</string></map>'
        new, original = apply_edit(content, "token", "xyz", "xml")
        assert original == "abc"
        assert '<string name="token">xyz</string>' in new

    def test_missing_key_appended(self):
        new, original = apply_edit("<config />", "mode", "debug", "xml")
        assert original is None
        assert "<mode>debug</mode>" in new

    def test_malformed(self):
        with pytest.raises(ConfigFormatError, match="Invalid XML"):
            apply_edit("<config>", "a", "b", "xml")

    @pytest.mark.parametrize("key", ["bad key", "1x", "a<b", "*", "mode\n"])
    def test_invalid_element_name_rejected(self, key):
        with pytest.raises(ConfigFormatError, match="not a valid XML element name"):
            apply_edit("<config><level>high</level></config>", key, "x", "xml")

    def test_named_entry_with_any_name_still_editable(self):
        content = '<map><string name="user id">abc</string></map>'
        new, original = apply_edit(content, "user id", "xyz", "xml")
        assert original == "abc"
        assert ET.fromstring(new).find("string").text == "xyz"

    def test_created_element_is_well_formed(self):
        new, _ = apply_edit("<config />", "cert.pinning-mode", "strict", "xml")
        element = ET.fromstring(new)[0]
        assert (element.tag, element.text) == ("cert.pinning-mode", "strict")


class TestApplyEdit:
    def test_empty_key(self):
        with pytest.raises(ConfigFormatError):
            apply_edit("a=1", "", "b", "properties")

    def test_format_is_case_insensitive(self):
        new, _ = apply_edit("a=1", "a", "2", "PROPERTIES")
        assert new == "a=2"



class TestReadValue:
    def test_reads_each_format(self):
        assert read_value("a=1\n", "a", "properties") == "1"
        assert read_value('{"s": {"l": 2}}', "s.l", "json") == 2
        assert read_value('<m><b name="x" value="true"/></m>', "x", "xml") == "true"
        assert read_value("<config><level>high</level></config>", "level", "XML") == "high"

    def test_absent_key_is_none(self):
        assert read_value("a=1\n", "b", "properties") is None
        assert read_value('{"s": 1}', "s.l", "json") is None
        assert read_value("<config />", "level", "xml") is None

    def test_malformed_content_raises(self):
        with pytest.raises(ConfigFormatError, match="Invalid JSON"):
            read_value("{bad", "a", "json")

    def test_unsupported_format_raises(self):
        with pytest.raises(ConfigFormatError, match="Unsupported config format"):
            read_value("a=1", "a", "yaml")
