"""Tests for devsec/cli/printers.py and the CLI argument helpers."""
import pytest

from devsec.cli import printers
from devsec.cli.printers import _cli_print_analysis, _yes_no
from devsec.main import _parse_expected


def _analysis(engine, **kwargs):
    return engine.analyze_device(**kwargs)


class TestPrinters:
    def test_yes_no(self):
        assert _yes_no(True) == "YES"
        assert _yes_no(False) == "no"
        assert _yes_no(None) == "n/a"

    def test_clean_analysis(self, engine, shell, capsys):
        shell.files["/system/build.prop"] = b"x"
        _cli_print_analysis(_analysis(engine, critical_files=["/system/build.prop"]),
                            device_info={"model": "Pixel 6", "security_patch": None})
        out = capsys.readouterr().out
        assert "Pixel 6" in out
        assert "N/A" in out
        assert "Checked 1: 1 passed" in out
        assert "PASSED" in out
        assert "Recommendations" not in out

    def test_failed_analysis_lists_violations(self, engine, shell, capsys):
        shell.outputs["which su"] = "/system/xbin/su"
        shell.outputs["test -w /system && echo writable || echo readonly"] = "writable"
        analysis = _analysis(engine, critical_files=["/system/missing"])
        _cli_print_analysis(analysis)
        out = capsys.readouterr().out
        assert "/system/missing: missing" in out
        assert "su_binary" in out
        assert "Recommendations" in out

    def test_unreachable_marks_not_evaluated(self, engine, shell, capsys):
        shell.unreachable = True
        _cli_print_analysis(_analysis(engine))
        out = capsys.readouterr().out
        assert "NOT EVALUATED" in out
        assert "excluded" in out
        assert "FAILED" in out

    def test_verbose_flag_is_set(self, engine, capsys):
        _cli_print_analysis(_analysis(engine), verbose=True)
        assert printers.VERBOSE_CLI_OUTPUT_FLAG is True
        _cli_print_analysis(_analysis(engine), verbose=False)
        assert printers.VERBOSE_CLI_OUTPUT_FLAG is False


class TestParseExpected:
    def test_checksum_and_absent(self):
        assert _parse_expected(["/a=ABCDEF", "/system/xbin/su=absent"]) == {
            "/a": "abcdef",
            "/system/xbin/su": None,
        }

    def test_none(self):
        assert _parse_expected(None) == {}

    @pytest.mark.parametrize("bad", ["/a", "=abc"])
    def test_malformed(self, bad):
        with pytest.raises(ValueError, match="PATH=SHA256"):
            _parse_expected([bad])
