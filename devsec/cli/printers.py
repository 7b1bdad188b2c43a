"""CLI printing and output formatting functions."""
from typing import Dict, Any, Optional

from devsec.utils import safe_print

# --- CLI Printing Helper Functions ---
VERBOSE_CLI_OUTPUT_FLAG = False  # Global to control verbosity in print helpers


def _yes_no(flag: Optional[bool]) -> str:
    if flag is None:
        return "n/a"
    return "YES" if flag else "no"


def _print_device_info_cli(info: Dict[str, Any]):
    safe_print("\n--- Device ---")
    for key, value in info.items():
        safe_print(f"  {key:<24} {value if value else 'N/A'}")


def _print_detection_cli(result: Dict[str, Any]):
    category = result.get("category", "?")
    if result.get("fault"):
        safe_print(f"  {category:<14} NOT EVALUATED ({result['fault']})")
        return
    safe_print(
        f"  {category:<14} detected={_yes_no(result.get('detected')):<4} "
        f"confidence={result.get('confidence', 0):.2f} "
        f"({result.get('indicators_fired', 0)}/{result.get('indicators_total', 0)}) "
        f"risk={result.get('risk_label')}"
    )
    for ind in result.get("indicators", []):
        if ind.get("fault"):
            if VERBOSE_CLI_OUTPUT_FLAG:
                safe_print(f"      - {ind['name']:<28} fault: {ind['fault']}")
        elif ind.get("detected") or VERBOSE_CLI_OUTPUT_FLAG:
            safe_print(f"      - {ind['name']:<28} {_yes_no(ind.get('detected'))}")


def _print_integrity_cli(summary: Dict[str, Any], baselines: Dict[str, Any]):
    safe_print("\n--- File Integrity ---")
    if summary.get("fault"):
        safe_print(f"  Not evaluated: {summary['fault']}")
        return
    if not summary.get("total"):
        safe_print("  No critical files were checked.")
        return
    safe_print(f"  Checked {summary['total']}: {summary['passed']} passed, "
               f"{summary['failed']} failed, {summary['missing']} missing (score {summary['score']})")
    for violation in summary.get("violations", []):
        safe_print(f"  [!] {violation.get('path')}: {violation.get('reason')} {violation.get('message', '')}".rstrip())
    if VERBOSE_CLI_OUTPUT_FLAG:
        for path, entry in baselines.items():
            safe_print(f"      {path}: {entry.get('checksum') or entry.get('fault')}")


def _print_report_cli(report: Dict[str, Any]):
    safe_print("\n--- Assessment ---")
    for cs in report.get("category_scores", []):
        if cs.get("evaluated"):
            safe_print(f"  {cs['category']:<16} {cs['score']:>6.1f}  (weight {cs['weight']:.2f})")
        else:
            safe_print(f"  {cs['category']:<16} {'--':>6}  excluded: {cs.get('fault')}")
    safe_print(f"\n  Overall score : {report['overall_score']}")
    safe_print(f"  Security level: {report['security_level']}")
    safe_print(f"  Risk level    : {report['risk_level']}")
    safe_print(f"  Result        : {'PASSED' if report['passed'] else 'FAILED'}")
    recommendations = report.get("recommendations") or []
    if recommendations:
        safe_print("\n--- Recommendations ---")
        for line in recommendations:
            safe_print(f"  * {line}")


def _cli_print_analysis(analysis: Dict[str, Any], device_info: Optional[Dict[str, Any]] = None,
                        verbose: bool = False):
    """Print the result of ``SecurityEngine.analyze_device`` to stdout."""
    global VERBOSE_CLI_OUTPUT_FLAG
    VERBOSE_CLI_OUTPUT_FLAG = verbose

    if device_info:
        _print_device_info_cli(device_info)

    safe_print("\n--- Detections ---")
    if analysis.get("package_name"):
        safe_print(f"  Package: {analysis['package_name']}")
    for result in analysis.get("detections", {}).values():
        _print_detection_cli(result)

    _print_integrity_cli(analysis.get("file_integrity", {}), analysis.get("baselines", {}))
    _print_report_cli(analysis["report"])
