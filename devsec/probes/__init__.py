"""Evidence probes and the per-category probe registry.

A probe is one atomic check against a device. ``CommandProbe`` covers the
common case of "run a shell command, apply a predicate to its output";
anything more involved subclasses ``Probe`` and overrides ``run``.
"""
import logging

from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, Union

from devsec.errors import EvidenceCollectionFault

logger = logging.getLogger("DevSec")

Predicate = Callable[[str], bool]


class Probe:
    """Base class for a single named indicator check."""

    def __init__(self, name: str, category: str, weight: Optional[float] = None):
        if not name:
            raise ValueError("Probe name must not be empty")
        if weight is not None and not (0.0 <= float(weight) <= 1.0):
            raise ValueError(f"Probe '{name}' weight must be in [0, 1], got {weight}")
        self.name = name
        self.category = category
        self.weight = None if weight is None else float(weight)

    def run(self, shell, timeout_ms: Optional[int] = None) -> bool:
        """Return True when the indicator fires.

        Raise ``EvidenceCollectionFault`` when the check itself could not be
        carried out. ``DeviceUnreachableError`` from the shell propagates.
        """
        raise NotImplementedError

    def cache_key(self) -> Tuple:
        """Hashable identity of what this probe checks, used to memoize collections."""
        return (type(self).__qualname__, self.name, self.weight)

    def __repr__(self):
        return f"<{type(self).__name__} {self.category}/{self.name}>"


class CommandProbe(Probe):
    """Runs one shell command and applies *predicate* to its stdout.

    When *require_success* is set a non-zero exit is a fault; otherwise the
    predicate sees whatever output there was (commands such as ``which su``
    exit non-zero precisely when the indicator is absent). Timeouts are
    always faults.
    """

    def __init__(self, name: str, category: str, command: str,
                 predicate: Union[Predicate, str], weight: Optional[float] = None,
                 require_success: bool = False):
        super().__init__(name, category, weight)
        if not command:
            raise ValueError(f"Probe '{name}' has no command")
        self.command = command
        self.predicate = _coerce_predicate(predicate)
        self.require_success = require_success

    def run(self, shell, timeout_ms: Optional[int] = None) -> bool:
        result = shell.execute(self.command, timeout_ms)
        if result.timed_out:
            raise EvidenceCollectionFault(result.error or "timed out")
        if not result.success and self.require_success:
            raise EvidenceCollectionFault(result.error or "command failed")
        try:
            return bool(self.predicate(result.output or ""))
        except Exception as e:
            raise EvidenceCollectionFault(f"predicate error: {e}") from e

    def cache_key(self) -> Tuple:
        return (type(self).__qualname__, self.name, self.command,
                predicate_token(self.predicate), self.weight, self.require_success)


def tokenized(token: Hashable, predicate: Predicate) -> Predicate:
    """Attach a stable cache token to a predicate built by a factory.

    Without one, a predicate is identified by the function object itself,
    so freshly built closures never share cached collections.
    """
    predicate.cache_token = token
    return predicate


def predicate_token(predicate: Predicate) -> Hashable:
    return getattr(predicate, "cache_token", predicate)


def contains(*needles: str, case_sensitive: bool = False) -> Predicate:
    """Predicate that fires when any needle occurs in the output."""
    token = ("contains", needles, case_sensitive)
    if case_sensitive:
        return tokenized(token, lambda out: any(n in out for n in needles))
    lowered = [n.lower() for n in needles]
    return tokenized(token, lambda out: any(n in out.lower() for n in lowered))


def equals(expected: str) -> Predicate:
    return tokenized(("equals", expected), lambda out: out.strip() == expected)


def _coerce_predicate(predicate: Union[Predicate, str]) -> Predicate:
    if callable(predicate):
        return predicate
    if isinstance(predicate, str):
        return contains(predicate)
    raise ValueError(f"Unsupported predicate type: {type(predicate).__name__}")


def as_probe(item: Any, category: str) -> Probe:
    """Convert a ``Probe``, mapping or tuple into a ``Probe`` for *category*.

    Mappings need ``name``, ``command`` and ``predicate`` (``weight`` and
    ``require_success`` are optional). Tuples are
    ``(name, command, predicate[, weight])``.
    """
    if isinstance(item, Probe):
        return item
    if isinstance(item, dict):
        missing = [k for k in ("name", "command", "predicate") if k not in item]
        if missing:
            raise ValueError(f"Probe mapping is missing keys: {', '.join(missing)}")
        return CommandProbe(
            item["name"], category, item["command"], item["predicate"],
            weight=item.get("weight"),
            require_success=bool(item.get("require_success", False)),
        )
    if isinstance(item, (tuple, list)) and len(item) in (3, 4):
        weight = item[3] if len(item) == 4 else None
        return CommandProbe(item[0], category, item[1], item[2], weight=weight)
    raise ValueError(f"Cannot build a probe from {type(item).__name__}: {item!r}")


def as_probes(items: Iterable[Any], category: str) -> List[Probe]:
    probes = [as_probe(item, category) for item in items]
    names = [p.name for p in probes]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate probe names in '{category}' probe set: {names}")
    return probes


class ProbeRegistry:
    """Ordered probes per category, plus factories for parameterized categories.

    Factories receive keyword parameters (e.g. ``package_name`` for the
    application category) and return a probe list.
    """

    def __init__(self):
        self._probes: Dict[str, List[Probe]] = {}
        self._factories: Dict[str, Callable[..., List[Probe]]] = {}

    def register(self, probe: Probe) -> None:
        bucket = self._probes.setdefault(probe.category, [])
        if any(p.name == probe.name for p in bucket):
            raise ValueError(f"Probe '{probe.name}' already registered for '{probe.category}'")
        bucket.append(probe)

    def register_many(self, probes: Iterable[Probe]) -> None:
        for probe in probes:
            self.register(probe)

    def register_factory(self, category: str, factory: Callable[..., List[Probe]]) -> None:
        self._factories[category] = factory

    def categories(self) -> List[str]:
        return sorted(set(self._probes) | set(self._factories))

    def probes_for(self, category: str, **params) -> List[Probe]:
        if category in self._factories:
            return list(self._factories[category](**params))
        if category not in self._probes:
            raise KeyError(f"No probes registered for category '{category}'")
        return list(self._probes[category])


def default_registry() -> ProbeRegistry:
    """Registry pre-loaded with the built-in Android catalogue."""
    from devsec.probes import android
    registry = ProbeRegistry()
    android.register_builtin(registry)
    return registry
