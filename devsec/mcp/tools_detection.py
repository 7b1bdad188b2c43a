"""MCP tools for device selection, category detection and risk assessment."""
from typing import Dict, Any, List, Optional

from devsec.assessor import RiskAssessor
from devsec.config import state, logger, Context, get_adb_path
from devsec.mcp.server import tool_decorator, _get_engine, _run_engine_call, _check_mcp_response_size
from devsec.shell import AdbShell


@tool_decorator
async def connect_device(ctx: Context, serial: Optional[str] = None,
                         adb_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Selects the device this session will assess and verifies the connection.
    Replaces any engine previously created for this session (its result cache
    is discarded; backups on disk are kept).

    Args:
        ctx: The MCP Context object.
        serial: (Optional[str]) adb serial of the device (see 'adb devices').
            When omitted, the configured DEVSEC_DEVICE_SERIAL or adb's default
            device is used.
        adb_path: (Optional[str]) Path to the adb binary. Defaults to the
            configured adb_path or 'adb' on PATH.

    Returns:
        A dictionary containing:
        - "connected": (bool) whether a trivial shell command succeeded.
        - "serial": the selected serial (or null for the default device).
        - "devices": devices reported by 'adb devices'.
        - "device_info": manufacturer, model, Android version and similar
          properties when connected.
    """
    await ctx.info(f"Connecting to device {serial or '(default)'}")
    shell = AdbShell(adb_path=adb_path or state.adb_path or get_adb_path())
    devices = await _run_engine_call("connect_device", shell.list_devices)

    state.device_serial = serial
    if adb_path:
        state.adb_path = adb_path
    state.reset_engine()
    engine = _get_engine("connect_device")

    connected = await _run_engine_call("connect_device", engine.check_connection)
    response: Dict[str, Any] = {
        "connected": connected,
        "serial": serial,
        "devices": devices,
    }
    if connected:
        response["device_info"] = await _run_engine_call("connect_device", engine.get_device_info)
    else:
        await ctx.warning("Device did not answer a shell command; detections will fail until it is reachable.")
    return response


@tool_decorator
async def detect_category(ctx: Context, category: str,
                          package_name: Optional[str] = None,
                          probes: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """
    Runs one detection category against the device and returns the verdict.

    Built-in categories: 'emulator', 'root', 'debug', 'environment',
    'security_features' (SELinux, encryption, verified boot, patch level,
    screen lock), 'network', and 'application' (requires package_name).

    Args:
        ctx: The MCP Context object.
        category: (str) The detection category.
        package_name: (Optional[str]) Android package for the 'application' category.
        probes: (Optional[List[Dict]]) Custom probe set replacing the built-in
            one. Each entry needs 'name', 'command' and 'predicate' (a
            substring that must appear in the command output for the
            indicator to fire), plus an optional 'weight' in [0, 1].

    Returns:
        The detection result: detected, confidence (fraction of weighted
        indicators that fired), indicators_fired/total, risk_label, the
        individual indicators, and 'fault' when the category could not be
        evaluated (e.g. device unreachable).
    """
    engine = _get_engine("detect_category")
    if probes is not None:
        for p in probes:
            if not isinstance(p.get("predicate"), str):
                raise ValueError("[detect_category] Custom probe 'predicate' must be a substring to match.")
    try:
        result = await _run_engine_call("detect_category", engine.detect_category,
                                        category, probes, package_name)
    except ValueError as e:
        raise ValueError(f"[detect_category] {e}") from e
    await ctx.info(f"{category}: detected={result.detected} confidence={result.confidence:.2f}")
    return await _check_mcp_response_size(ctx, result.to_dict(), "detect_category")


@tool_decorator
async def analyze_device(ctx: Context, package_name: Optional[str] = None,
                         critical_files: Optional[List[str]] = None,
                         expected_checksums: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, Any]:
    """
    Runs a full security assessment of the connected device: emulator, root
    and debug detection (concurrently), environment, security-feature and
    network checks, application checks when a package is given, and a
    file-integrity summary, fused into one weighted report. Security-feature
    weaknesses are scored within the environment category.

    Args:
        ctx: The MCP Context object.
        package_name: (Optional[str]) Android package whose manifest flags to assess.
        critical_files: (Optional[List[str]]) Device paths whose presence and
            checksum feed the file-integrity category.
        expected_checksums: (Optional[Dict[str, Optional[str]]]) Expected
            SHA-256 per path. A null value means the file must NOT exist.

    Returns:
        A dictionary with per-category 'detections', the 'file_integrity'
        summary, captured 'baselines' and the final 'report' (overall_score,
        security_level, risk_level, passed, recommendations,
        excluded_categories).
    """
    engine = _get_engine("analyze_device")
    await ctx.info("Running full device analysis...")
    result = await _run_engine_call("analyze_device", engine.analyze_device,
                                    package_name, critical_files, expected_checksums)
    report = result["report"]
    await ctx.info(f"Overall score {report['overall_score']} ({report['security_level']}), passed={report['passed']}")
    if report["excluded_categories"]:
        await ctx.warning(f"Excluded categories: {', '.join(report['excluded_categories'])}")
    return await _check_mcp_response_size(ctx, result, "analyze_device")


@tool_decorator
async def assess_scores(ctx: Context, category_inputs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Computes a weighted assessment report from caller-supplied category
    evidence, without touching the device.

    Weights: device 0.40, application 0.25, environment 0.20,
    file_integrity 0.10, network 0.05. Categories that are marked as not
    evaluated are excluded and the remaining weights renormalized.

    Args:
        ctx: The MCP Context object.
        category_inputs: (Dict[str, Any]) Per category, one of:
            a number 0-100; {"score": n}; {"facts": {...}} evaluated with the
            category's deduction rules (e.g. {"facts": {"root": true}} for
            'device'); or {"fault": "reason"} / {"evaluated": false} to
            exclude it. 'file-integrity' and 'fileIntegrity' are accepted.

    Returns:
        The assessment report dictionary.
    """
    if not category_inputs:
        raise ValueError("[assess_scores] category_inputs must not be empty.")
    # Scoring only; never touches the device.
    assessor = state.get_engine().assessor if state.has_engine() else RiskAssessor()
    try:
        report = assessor.assess(category_inputs)
    except (ValueError, TypeError) as e:
        raise ValueError(f"[assess_scores] {e}") from e
    logger.debug("assess_scores produced overall=%s", report.overall_score)
    return report.to_dict()
