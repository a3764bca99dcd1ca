"""
Module Registry - discovery, contract validation and lookup of feature modules.

Discovery walks the configured sources in order and registers what each
candidate's factory returns. A failure in one candidate is recorded and
skipped; it never stops the rest of the batch. Ids are unique and the first
registration wins, so listing core sources first lets core modules take
precedence over site overrides of the same id.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from tiergate.events import EventBus, ModuleRegisteredEvent, event_bus as default_event_bus
from tiergate.exceptions import (
    DuplicateIdError,
    InstantiationError,
    ModuleValidationError,
    NotFoundError,
    TierGateError,
)
from tiergate.module_registry.descriptor import (
    ModuleDescriptor,
    RegisteredModule,
    validate_descriptor,
)
from tiergate.module_registry.sources import ModuleCandidate, ModuleSource, instantiate

if TYPE_CHECKING:
    from tiergate.membership.engine import EntitlementEngine

logger = logging.getLogger(__name__)

SourceProvider = Callable[[], Iterable[ModuleSource]]


class ModuleRegistry:
    def __init__(
        self,
        sources: Optional[Iterable[ModuleSource]] = None,
        *,
        event_bus: Optional[EventBus] = None,
    ):
        self._sources: List[ModuleSource] = list(sources or [])
        self._source_providers: List[SourceProvider] = []
        self._modules: Dict[str, RegisteredModule] = {}
        self._errors: List[str] = []
        self._lock = threading.RLock()
        self._event_bus = event_bus or default_event_bus

    # -- sources -----------------------------------------------------------

    def add_source(self, source: ModuleSource) -> None:
        with self._lock:
            self._sources.append(source)

    def add_source_provider(self, provider: SourceProvider) -> None:
        """Registers a callback contributing extra sources at discovery time."""
        with self._lock:
            self._source_providers.append(provider)

    @property
    def sources(self) -> List[ModuleSource]:
        with self._lock:
            return list(self._sources)

    # -- discovery ---------------------------------------------------------

    def discover(self, sources: Optional[Iterable[ModuleSource]] = None) -> None:
        # Held for the whole batch so readers never see a half-built catalog
        with self._lock:
            ordered = list(self._sources if sources is None else sources)
            for provider in self._source_providers:
                try:
                    ordered.extend(provider() or [])
                except Exception as exc:
                    self._record_error(f"Module source provider {_name_of(provider)} failed: {exc}")

            before = len(self._modules)
            for source in ordered:
                try:
                    candidates = list(source.candidates())
                except Exception as exc:
                    self._record_error(f"Failed to list modules in {source.label}: {exc}")
                    continue
                for candidate in candidates:
                    self._load_candidate(candidate)

            logger.info(
                f"Module discovery finished: {len(self._modules) - before} registered, "
                f"{len(self._errors)} errors"
            )

    def _load_candidate(self, candidate: ModuleCandidate) -> None:
        try:
            instances = instantiate(candidate.load())
        except Exception as exc:
            error = InstantiationError(candidate.label, str(exc) or type(exc).__name__)
            logger.debug(f"Candidate {candidate.label} failed", exc_info=True)
            self._record_error(error.message)
            return

        if not instances:
            self._record_error(
                InstantiationError(candidate.label, "factory returned no modules").message
            )
            return

        for instance in instances:
            try:
                descriptor = self._describe(instance)
            except Exception as exc:
                self._record_error(InstantiationError(candidate.label, str(exc)).message)
                continue
            try:
                self.register(descriptor, instance, source=candidate.label)
            except TierGateError:
                # register() already recorded the error
                continue

    @staticmethod
    def _describe(instance: Any) -> ModuleDescriptor:
        describe = getattr(instance, "describe", None)
        if not callable(describe):
            raise TypeError(f"{type(instance).__name__} does not implement describe()")
        descriptor = describe()
        if isinstance(descriptor, ModuleDescriptor):
            return descriptor
        if isinstance(descriptor, dict):
            return ModuleDescriptor.from_mapping(descriptor)
        raise TypeError(f"describe() returned {type(descriptor).__name__}")

    # -- registration ------------------------------------------------------

    def validate(self, descriptor: ModuleDescriptor) -> None:
        validate_descriptor(descriptor)

    def register(
        self,
        descriptor: ModuleDescriptor,
        instance: Any = None,
        *,
        source: Optional[str] = None,
    ) -> RegisteredModule:
        with self._lock:
            if isinstance(descriptor.id, str) and descriptor.id in self._modules:
                error = DuplicateIdError(descriptor.id)
                self._record_error(_with_source(error.message, source))
                raise error
            try:
                self.validate(descriptor)
            except ModuleValidationError as exc:
                self._record_error(_with_source(exc.message, source))
                raise

            entry = RegisteredModule(descriptor=descriptor, instance=instance, source=source)
            self._modules[descriptor.id] = entry

        logger.debug(f"Registered module {descriptor.id} {descriptor.version} from {source}")
        self._event_bus.publish(
            ModuleRegisteredEvent(
                module_id=descriptor.id,
                version=descriptor.version,
                source=source,
            )
        )
        return entry

    def register_module(self, instance: Any, *, source: Optional[str] = None) -> RegisteredModule:
        """Registers a module instance using its own describe()."""
        return self.register(self._describe(instance), instance, source=source)

    # -- lookup ------------------------------------------------------------

    def get(self, module_id: str) -> RegisteredModule:
        with self._lock:
            entry = self._modules.get(module_id)
        if entry is None:
            raise NotFoundError("Module", module_id)
        return entry

    def find(self, module_id: str) -> Optional[RegisteredModule]:
        with self._lock:
            return self._modules.get(module_id)

    def __contains__(self, module_id: object) -> bool:
        with self._lock:
            return module_id in self._modules

    def __len__(self) -> int:
        with self._lock:
            return len(self._modules)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._modules)

    def list_all(self) -> List[RegisteredModule]:
        with self._lock:
            return list(self._modules.values())

    def list_enabled(self) -> List[RegisteredModule]:
        return [entry for entry in self.list_all() if entry.enabled]

    def list_for_user(self, user_id: int, engine: "EntitlementEngine") -> List[RegisteredModule]:
        return [
            entry
            for entry in self.list_enabled()
            if engine.can_access_module(entry.id, user_id)
        ]

    def set_enabled(self, module_id: str, enabled: bool) -> None:
        with self._lock:
            entry = self._modules.get(module_id)
            if entry is None:
                raise NotFoundError("Module", module_id)
            entry.descriptor.enabled = bool(enabled)
        logger.info(f"Module {module_id} {'enabled' if enabled else 'disabled'}")

    # -- errors / stats ----------------------------------------------------

    def get_errors(self) -> List[str]:
        with self._lock:
            return list(self._errors)

    def clear_errors(self) -> None:
        with self._lock:
            self._errors.clear()

    def _record_error(self, message: str) -> None:
        self._errors.append(message)
        logger.warning(message)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self._modules.values())
            by_min_tier: Dict[str, int] = {}
            for entry in entries:
                tier = entry.descriptor.min_tier.value
                by_min_tier[tier] = by_min_tier.get(tier, 0) + 1
            return {
                "total": len(entries),
                "enabled": sum(1 for e in entries if e.enabled),
                "disabled": sum(1 for e in entries if not e.enabled),
                "by_min_tier": by_min_tier,
                "errors": len(self._errors),
            }


def _with_source(message: str, source: Optional[str]) -> str:
    return f"{source}: {message}" if source else message


def _name_of(obj: Any) -> str:
    return getattr(obj, "__name__", repr(obj))
