"""Signal collection: runs a category's probes against the device shell."""
import concurrent.futures
import logging

from typing import Any, Dict, Iterable, Optional

from devsec.cache import ResultCache
from devsec.errors import DeviceUnreachableError, EvidenceCollectionFault
from devsec.models import CollectionResult, Indicator
from devsec.probes import as_probes
from devsec.shell import DEFAULT_TIMEOUT_MS, DeviceShell

logger = logging.getLogger("DevSec")

DEFAULT_MAX_WORKERS = 4


class SignalCollector:
    """Collects indicators one category at a time.

    A probe that faults becomes a negative indicator carrying a fault note
    and collection moves on. A ``DeviceUnreachableError`` stops the batch:
    the indicators gathered so far come back with ``unreachable=True``.
    Only fully clean collections are memoized in the injected cache.
    """

    def __init__(self, shell: DeviceShell, cache: Optional[ResultCache] = None,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS, max_workers: int = DEFAULT_MAX_WORKERS):
        self.shell = shell
        self.cache = cache
        self.timeout_ms = timeout_ms
        self.max_workers = max_workers

    def collect(self, category: str, probe_set: Iterable[Any]) -> CollectionResult:
        probes = as_probes(probe_set, category)
        cache_key = ("collect", category, tuple(p.cache_key() for p in probes))
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Collection cache hit for '%s'", category)
                return cached

        indicators = []
        for probe in probes:
            try:
                detected = probe.run(self.shell, self.timeout_ms)
                indicators.append(Indicator(probe.name, category, bool(detected), probe.weight))
            except DeviceUnreachableError as e:
                logger.warning("Device unreachable while collecting '%s' (probe %s): %s",
                               category, probe.name, e)
                return CollectionResult(category, indicators, unreachable=True,
                                        fault=f"device unreachable: {e}")
            except EvidenceCollectionFault as e:
                logger.debug("Probe %s/%s faulted: %s", category, probe.name, e)
                indicators.append(Indicator(probe.name, category, False, probe.weight, fault=str(e)))
            except Exception as e:
                logger.warning("Probe %s/%s raised %s: %s", category, probe.name, type(e).__name__, e)
                indicators.append(Indicator(probe.name, category, False, probe.weight,
                                            fault=f"{type(e).__name__}: {e}"))

        result = CollectionResult(category, indicators)
        if self.cache is not None and not result.faults:
            self.cache.set(cache_key, result)
        return result

    def collect_many(self, probe_sets: Dict[str, Iterable[Any]]) -> Dict[str, CollectionResult]:
        """Collect independent categories concurrently, one worker per category."""
        if not probe_sets:
            return {}
        workers = max(1, min(self.max_workers, len(probe_sets)))
        results: Dict[str, CollectionResult] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self.collect, category, probes): category
                for category, probes in probe_sets.items()
            }
            for future in concurrent.futures.as_completed(futures):
                category = futures[future]
                results[category] = future.result()
        # Preserve the caller's category order
        return {category: results[category] for category in probe_sets}
