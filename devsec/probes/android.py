"""Built-in Android probe catalogue.

Each category gets an ordered list of ``CommandProbe`` objects. Commands
are written so that a missing binary or property yields empty output
rather than a shell error, which keeps "absent" distinct from "faulted".
"""
import datetime

from typing import List, Optional

from devsec.probes import CommandProbe, Probe, ProbeRegistry, contains, equals, tokenized
from devsec.utils import quote_remote

EMULATOR = "emulator"
ROOT = "root"
DEBUG = "debug"
ENVIRONMENT = "environment"
NETWORK = "network"
APPLICATION = "application"
SECURITY_FEATURES = "security_features"

QEMU_FILES = (
    "/system/lib/libc_malloc_debug_qemu.so",
    "/sys/qemu_trace",
    "/system/bin/qemu-props",
    "/dev/socket/qemud",
    "/dev/qemu_pipe",
)

HARDWARE_FEATURES = (
    "android.hardware.camera",
    "android.hardware.location.gps",
    "android.hardware.nfc",
    "android.hardware.telephony",
    "android.hardware.bluetooth",
    "android.hardware.wifi",
)
MAX_MISSING_FEATURES = 3

ROOT_APPS = ("supersu", "superuser", "kingroot", "kingoroot", "magisk")
HOOKING_TOOLS = ("frida", "xposed", "substrate", "gameguardian")
MAGISK_PATHS = ("/sbin/.magisk", "/data/adb/magisk", "/data/adb/modules")

# "green" is a locked bootloader with a verified image; anything else is weaker.
WEAK_BOOT_STATES = ("yellow", "orange", "red")
PATCH_MAX_AGE_DAYS = 365


def _getprop(prop: str) -> str:
    return f"getprop {prop}"


def _any_exists(paths) -> str:
    joined = " ".join(quote_remote(p) for p in paths)
    return f"for f in {joined}; do [ -e \"$f\" ] && echo \"$f\"; done; true"


def _non_empty(out: str) -> bool:
    return bool(out.strip())


def _setting_enabled(out: str) -> bool:
    return out.strip() == "1"


def _missing_features(out: str) -> bool:
    missing = [f for f in HARDWARE_FEATURES if f not in out]
    return len(missing) > MAX_MISSING_FEATURES


def _insecure_build_props(out: str) -> bool:
    lines = [line.strip() for line in out.splitlines()]
    debuggable = lines[0] if lines else ""
    secure = lines[1] if len(lines) > 1 else ""
    return debuggable == "1" or secure == "0"


def _tcp_port_open(out: str) -> bool:
    value = out.strip()
    return value.isdigit() and int(value) > 0


def _proxy_set(out: str) -> bool:
    value = out.strip()
    return value not in ("", "null", ":0")


def _boot_state_weak(out: str) -> bool:
    return out.strip().lower() in WEAK_BOOT_STATES


def _patch_is_stale(out: str, today: Optional[datetime.date] = None) -> bool:
    """True when the ``YYYY-MM-DD`` patch level is older than a year. Unparsable dates never fire."""
    try:
        patched = datetime.date.fromisoformat(out.strip())
    except ValueError:
        return False
    today = today or datetime.date.today()
    return (today - patched).days > PATCH_MAX_AGE_DAYS



def emulator_probes() -> List[Probe]:
    return [
        CommandProbe("fingerprint_generic", EMULATOR, _getprop("ro.build.fingerprint"),
                     contains("generic"), require_success=True),
        CommandProbe("fingerprint_test_keys", EMULATOR, _getprop("ro.build.fingerprint"),
                     contains("test-keys"), require_success=True),
        CommandProbe("model_emulator", EMULATOR, _getprop("ro.product.model"),
                     contains("Emulator", "Android SDK", case_sensitive=True), require_success=True),
        CommandProbe("product_sdk", EMULATOR, _getprop("ro.build.product"),
                     contains("sdk", "generic"), require_success=True),
        CommandProbe("emulator_hardware", EMULATOR, _getprop("ro.hardware"),
                     contains("goldfish", "ranchu"), require_success=True),
        CommandProbe("kernel_qemu", EMULATOR, _getprop("ro.kernel.qemu"),
                     equals("1"), require_success=True),
        CommandProbe("qemu_files", EMULATOR, _any_exists(QEMU_FILES), _non_empty),
        CommandProbe("missing_hardware_features", EMULATOR, "pm list features",
                     _missing_features, require_success=True),
    ]


def root_probes() -> List[Probe]:
    return [
        CommandProbe("su_binary", ROOT, "which su", contains("/su")),
        CommandProbe("root_apps", ROOT, "pm list packages", contains(*ROOT_APPS), require_success=True),
        CommandProbe("system_writable", ROOT,
                     "test -w /system && echo writable || echo readonly", equals("writable")),
        CommandProbe("dangerous_props", ROOT,
                     f"{_getprop('ro.debuggable')}; {_getprop('ro.secure')}",
                     _insecure_build_props, require_success=True),
        CommandProbe("busybox", ROOT, "which busybox", contains("busybox")),
        CommandProbe("magisk", ROOT, _any_exists(MAGISK_PATHS), _non_empty),
    ]


def debug_probes() -> List[Probe]:
    return [
        CommandProbe("adb_secure_disabled", DEBUG, _getprop("ro.adb.secure"), equals("0"),
                     require_success=True),
        CommandProbe("ro_debuggable", DEBUG, _getprop("ro.debuggable"), equals("1"),
                     require_success=True),
        CommandProbe("developer_options", DEBUG,
                     "settings get global development_settings_enabled", _setting_enabled),
        CommandProbe("usb_debugging", DEBUG, "settings get global adb_enabled", _setting_enabled),
        CommandProbe("mock_location", DEBUG, "settings get secure mock_location", _setting_enabled),
        CommandProbe("debugger_attached", DEBUG, "ps -A",
                     contains("gdbserver", "lldb-server"), require_success=True),
    ]


def environment_probes() -> List[Probe]:
    return [
        CommandProbe("hooking_framework", ENVIRONMENT, "pm list packages",
                     contains(*HOOKING_TOOLS), require_success=True),
        CommandProbe("frida_server", ENVIRONMENT, "ps -A", contains("frida"),
                     require_success=True),
        CommandProbe("adb_over_network", ENVIRONMENT, _getprop("service.adb.tcp.port"), _tcp_port_open),
        CommandProbe("developer_options", ENVIRONMENT,
                     "settings get global development_settings_enabled", _setting_enabled),
        CommandProbe("mock_location", ENVIRONMENT, "settings get secure mock_location", _setting_enabled),
    ]


def network_probes() -> List[Probe]:
    return [
        CommandProbe("user_ca_installed", NETWORK,
                     "ls /data/misc/user/0/cacerts-added 2>/dev/null; true", _non_empty),
        CommandProbe("global_proxy", NETWORK, "settings get global http_proxy", _proxy_set),
        CommandProbe("vpn_active", NETWORK, "ip link 2>/dev/null; true", contains("tun0", "ppp0")),
    ]


def security_feature_probes() -> List[Probe]:
    """Platform protections that are switched off or out of date.

    Each indicator fires only on an explicit weak value; a property the
    device does not report counts as absent.
    """
    return [
        CommandProbe("selinux_not_enforcing", SECURITY_FEATURES, "getenforce",
                     contains("Permissive", "Disabled")),
        CommandProbe("storage_unencrypted", SECURITY_FEATURES, _getprop("ro.crypto.state"),
                     equals("unencrypted"), require_success=True),
        CommandProbe("verified_boot_not_green", SECURITY_FEATURES, _getprop("ro.boot.verifiedbootstate"),
                     _boot_state_weak, require_success=True),
        CommandProbe("stale_security_patch", SECURITY_FEATURES, _getprop("ro.build.version.security_patch"),
                     _patch_is_stale, require_success=True),
        CommandProbe("screen_lock_disabled", SECURITY_FEATURES, "locksettings get-disabled 2>/dev/null; true",
                     equals("true")),
    ]


def _package_flag(flag: str):
    def _check(out: str) -> bool:
        if "Unable to find package" in out:
            raise ValueError("package is not installed")
        return flag in out
    return tokenized(("package_flag", flag), _check)


def application_probes(package_name: str = None) -> List[Probe]:
    """Probes reading ``dumpsys package`` flags for one installed package."""
    if not package_name:
        raise ValueError("The application category requires a package_name")
    command = f"dumpsys package {quote_remote(package_name)}"
    return [
        CommandProbe("debuggable", APPLICATION, command, _package_flag("DEBUGGABLE"), require_success=True),
        CommandProbe("allow_backup", APPLICATION, command, _package_flag("ALLOW_BACKUP"), require_success=True),
        CommandProbe("test_only", APPLICATION, command, _package_flag("TEST_ONLY"), require_success=True),
    ]


def register_builtin(registry: ProbeRegistry) -> None:
    registry.register_many(emulator_probes())
    registry.register_many(root_probes())
    registry.register_many(debug_probes())
    registry.register_many(environment_probes())
    registry.register_many(network_probes())
    registry.register_many(security_feature_probes())
    registry.register_factory(APPLICATION, application_probes)
