from tiergate.module_registry.descriptor import (
    MODULE_ID_PATTERN,
    ModuleDescriptor,
    RegisteredModule,
    validate_descriptor,
)
from tiergate.module_registry.module import FeatureModule
from tiergate.module_registry.registry import ModuleRegistry
from tiergate.module_registry.sources import (
    DirectorySource,
    EntryPointSource,
    ModuleCandidate,
    ModuleSource,
    PackageSource,
)

__all__ = [
    "MODULE_ID_PATTERN",
    "DirectorySource",
    "EntryPointSource",
    "FeatureModule",
    "ModuleCandidate",
    "ModuleDescriptor",
    "ModuleRegistry",
    "ModuleSource",
    "PackageSource",
    "RegisteredModule",
    "validate_descriptor",
]
