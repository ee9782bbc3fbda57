"""Configuration system for epispread.

Hierarchical configuration with deep-merge support:
  base file (YAML or legacy key=value .cfg) → override dicts → command line

Legacy .cfg files and command-line ``key=value`` pairs use the flat key
names of the legacy file format (``thetaOne``, ``dispA``, ``maxGen``...);
they are translated into the sectioned layout by ``LEGACY_KEYS``.
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from epispread.types import (
    NUMERIC_UNDERFLOW,
    ConfigurationError,
    DumpType,
    KernelShape,
    ModelType,
)


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Realization control."""
    n_iterations: int = 100
    max_generation: int = 3        # hosts at this generation stop infecting
    model: str = "SIS"             # 'SIS' or 'SIR'
    max_time: Optional[float] = None   # simulated-time cap; None = run to extinction
    seed: Optional[int] = None     # None = fresh OS entropy
    parallel_workers: int = 1
    check_rates_every: int = 0     # events between full rate checks; 0 = never


@dataclass
class TransmissionSection:
    """Per-class epidemiological rates and seeding."""
    theta_one: float = 0.1         # infectivity, Type I
    theta_two: float = 0.05        # infectivity, Type II
    rho_one: float = 0.05          # susceptibility, Type I
    rho_two: float = 0.05          # susceptibility, Type II
    mu_one: float = 2.5            # recovery/removal rate, Type I
    mu_two: float = 1.0            # recovery/removal rate, Type II
    init_one: int = 1              # initial infections, Type I
    init_two: int = 1              # initial infections, Type II


@dataclass
class KernelSection:
    """Transmission kernel."""
    shape: str = "power_exponential"   # 'power_exponential' or 'flat'
    scale: float = 0.5                 # alpha
    power: float = 1.0                 # c
    cache: bool = True                 # precompute the n×n table


@dataclass
class PopulationSection:
    host_file: Optional[str] = None


@dataclass
class OutputSection:
    """Output control."""
    out_file: str = "epidemics.csv"
    dump_type: str = "generations"     # 'generations' or 'times'
    n_time_steps: int = 100
    dump_host_status: bool = False
    dump_parameters: bool = True


@dataclass
class SimulationConfig:
    """Complete run configuration.

    Load via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    transmission: TransmissionSection = field(default_factory=TransmissionSection)
    kernel: KernelSection = field(default_factory=KernelSection)
    population: PopulationSection = field(default_factory=PopulationSection)
    output: OutputSection = field(default_factory=OutputSection)

    @property
    def model_type(self) -> ModelType:
        return ModelType(self.simulation.model)

    @property
    def kernel_shape(self) -> KernelShape:
        return KernelShape(self.kernel.shape)

    @property
    def dump_type(self) -> DumpType:
        return DumpType(self.output.dump_type)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'transmission': TransmissionSection,
    'kernel': KernelSection,
    'population': PopulationSection,
    'output': OutputSection,
}


# ═══════════════════════════════════════════════════════════════════════
# LEGACY KEY TRANSLATION
# ═══════════════════════════════════════════════════════════════════════

# flat key → (section, field)
LEGACY_KEYS = {
    'thetaOne': ('transmission', 'theta_one'),
    'thetaTwo': ('transmission', 'theta_two'),
    'rhoOne': ('transmission', 'rho_one'),
    'rhoTwo': ('transmission', 'rho_two'),
    'muOne': ('transmission', 'mu_one'),
    'muTwo': ('transmission', 'mu_two'),
    'initOne': ('transmission', 'init_one'),
    'initTwo': ('transmission', 'init_two'),
    'kernelType': ('kernel', 'shape'),
    'dispA': ('kernel', 'scale'),
    'dispC': ('kernel', 'power'),
    'cacheKernel': ('kernel', 'cache'),
    'numIts': ('simulation', 'n_iterations'),
    'maxGen': ('simulation', 'max_generation'),
    'modelType': ('simulation', 'model'),
    'maxTime': ('simulation', 'max_time'),
    'seed': ('simulation', 'seed'),
    'xyFile': ('population', 'host_file'),
    'outFile': ('output', 'out_file'),
    'dumpType': ('output', 'dump_type'),
    'dumpHostStatus': ('output', 'dump_host_status'),
}

# Numeric enum codes used by legacy files
_LEGACY_CODES = {
    ('kernel', 'shape'): {1: KernelShape.POWER_EXPONENTIAL.value, 2: KernelShape.FLAT.value},
    ('simulation', 'model'): {1: ModelType.SIS.value, 2: ModelType.SIR.value},
    ('output', 'dump_type'): {1: DumpType.GENERATIONS.value, 2: DumpType.TIMES.value},
}


def _parse_scalar(text: str) -> Any:
    """Parse a command-line/cfg value as a YAML scalar ('0.5' → 0.5)."""
    text = text.strip()
    if text == '':
        return None
    try:
        value = yaml.safe_load(text)
    except yaml.YAMLError:
        return text
    if isinstance(value, str):
        # YAML 1.1 reads '1e-5' as a string
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _legacy_value(section: str, name: str, value: Any) -> Any:
    codes = _LEGACY_CODES.get((section, name))
    if codes is not None and isinstance(value, int) and not isinstance(value, bool):
        if value not in codes:
            raise ConfigurationError(
                f"Invalid legacy code {value} for {section}.{name} "
                f"(must be one of {sorted(codes)})"
            )
        return codes[value]
    if (section, name) == ('simulation', 'max_time') and isinstance(value, (int, float)):
        # legacy files use a negative time to mean "no cap"
        return None if value < 0 else float(value)
    if (section, name) in (('output', 'dump_host_status'), ('kernel', 'cache')):
        return bool(value)
    return value


def _set_dotted(target: Dict, section: str, name: str, value: Any) -> None:
    target.setdefault(section, {})[name] = value


def parse_overrides(pairs: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Convert ``key=value`` strings into a nested override dict.

    Keys are either dotted (``kernel.scale``) or legacy flat names
    (``dispA``).

    Raises:
        ConfigurationError: on a malformed pair or unknown key.
    """
    overrides: Dict[str, Dict[str, Any]] = {}
    for pair in pairs:
        if '=' not in pair:
            raise ConfigurationError(f"Override '{pair}' is not of the form key=value")
        key, text = pair.split('=', 1)
        key = key.strip()
        value = _parse_scalar(text)
        if key in LEGACY_KEYS:
            section, name = LEGACY_KEYS[key]
            _set_dotted(overrides, section, name, _legacy_value(section, name, value))
        elif '.' in key:
            section, name = key.split('.', 1)
            if section not in _SECTION_MAP:
                raise ConfigurationError(f"Unknown configuration section '{section}' in '{pair}'")
            _set_dotted(overrides, section, name, value)
        else:
            raise ConfigurationError(f"Unknown configuration key '{key}'")
    return overrides


def read_legacy_cfg(path: Union[str, Path]) -> Dict[str, Dict[str, Any]]:
    """Read a legacy ``key=value`` configuration file.

    Lines without '=' are ignored. Unknown keys produce a warning.
    """
    config_dict: Dict[str, Dict[str, Any]] = {}
    with open(path) as f:
        for line in f:
            if '=' not in line:
                continue
            key, text = line.rstrip('\r\n').split('=', 1)
            key = key.strip()
            if key not in LEGACY_KEYS:
                warnings.warn(f"Ignoring unknown key '{key}' in {path}", UserWarning, stacklevel=2)
                continue
            section, name = LEGACY_KEYS[key]
            _set_dotted(config_dict, section, name,
                        _legacy_value(section, name, _parse_scalar(text)))
    return config_dict


# ═══════════════════════════════════════════════════════════════════════
# LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    Dict values merge recursively; anything else replaces.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    unknown = set(data) - valid_fields
    if unknown:
        warnings.warn(
            f"Ignoring unknown {section_cls.__name__} keys: {sorted(unknown)}",
            UserWarning,
            stacklevel=3,
        )
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def config_from_dict(data: Dict) -> SimulationConfig:
    """Convert a merged dict to a SimulationConfig (not validated)."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigurationError(message)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ConfigurationError on failure."""
    sim = config.simulation
    valid_models = {m.value for m in ModelType}
    _require(sim.model in valid_models,
             f"simulation.model must be one of {sorted(valid_models)}, got '{sim.model}'")
    _require(isinstance(sim.n_iterations, int) and sim.n_iterations >= 1,
             f"simulation.n_iterations must be a positive integer, got {sim.n_iterations}")
    _require(isinstance(sim.max_generation, int) and sim.max_generation >= 0,
             f"simulation.max_generation must be a non-negative integer, got {sim.max_generation}")
    if sim.max_time is not None:
        _require(_is_number(sim.max_time) and sim.max_time > 0,
                 f"simulation.max_time must be positive, got {sim.max_time}")
    if sim.seed is not None:
        _require(isinstance(sim.seed, int) and sim.seed >= 0,
                 f"simulation.seed must be a non-negative integer, got {sim.seed}")
    _require(isinstance(sim.parallel_workers, int) and sim.parallel_workers >= 1,
             f"simulation.parallel_workers must be >= 1, got {sim.parallel_workers}")
    _require(isinstance(sim.check_rates_every, int) and sim.check_rates_every >= 0,
             f"simulation.check_rates_every must be >= 0, got {sim.check_rates_every}")

    tr = config.transmission
    for name in ('theta_one', 'theta_two', 'rho_one', 'rho_two', 'mu_one', 'mu_two'):
        value = getattr(tr, name)
        _require(_is_number(value) and value >= 0,
                 f"transmission.{name} must be a non-negative number, got {value}")
    for name in ('mu_one', 'mu_two'):
        value = getattr(tr, name)
        if 0 < value <= NUMERIC_UNDERFLOW:
            warnings.warn(
                f"transmission.{name}={value} is at or below the underflow "
                f"threshold {NUMERIC_UNDERFLOW}; a lone infected host of this "
                "class reads as a zero total rate and ends the iteration early.",
                UserWarning,
                stacklevel=2,
            )
    for name in ('init_one', 'init_two'):
        value = getattr(tr, name)
        _require(isinstance(value, int) and value >= 0,
                 f"transmission.{name} must be a non-negative integer, got {value}")

    k = config.kernel
    valid_shapes = {s.value for s in KernelShape}
    _require(k.shape in valid_shapes,
             f"kernel.shape must be one of {sorted(valid_shapes)}, got '{k.shape}'")
    _require(_is_number(k.scale) and k.scale > 0, f"kernel.scale must be positive, got {k.scale}")
    _require(_is_number(k.power) and k.power > 0, f"kernel.power must be positive, got {k.power}")

    out = config.output
    valid_dumps = {d.value for d in DumpType}
    _require(out.dump_type in valid_dumps,
             f"output.dump_type must be one of {sorted(valid_dumps)}, got '{out.dump_type}'")
    _require(isinstance(out.n_time_steps, int) and out.n_time_steps >= 1,
             f"output.n_time_steps must be >= 1, got {out.n_time_steps}")
    if out.dump_type == DumpType.TIMES.value and sim.max_time is None:
        warnings.warn(
            "output.dump_type='times' requires simulation.max_time; "
            "time-course output will be skipped.",
            UserWarning,
            stacklevel=2,
        )


def _read_config_file(path: Path) -> Dict:
    if path.suffix.lower() in ('.yaml', '.yml'):
        with open(path) as f:
            return yaml.safe_load(f) or {}
    return read_legacy_cfg(path)


def load_config(
    base_path: Union[str, Path],
    overrides: Optional[List[Dict]] = None,
) -> SimulationConfig:
    """Load, merge and validate configuration.

    Args:
        base_path: YAML (.yaml/.yml) or legacy key=value (.cfg) file.
        overrides: Optional override dicts, applied in order.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ConfigurationError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    config_dict = _read_config_file(base_path)
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"{base_path} does not contain a mapping")
    for override in overrides or []:
        deep_merge(config_dict, override)

    config = config_from_dict(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config


def legacy_parameter_row(config: SimulationConfig) -> Dict[str, Any]:
    """Flat parameter record in the legacy parameter-dump layout."""
    shape_codes = {v: k for k, v in _LEGACY_CODES[('kernel', 'shape')].items()}
    model_codes = {v: k for k, v in _LEGACY_CODES[('simulation', 'model')].items()}
    tr = config.transmission
    return {
        'thetaOne': tr.theta_one,
        'thetaTwo': tr.theta_two,
        'rhoOne': tr.rho_one,
        'rhoTwo': tr.rho_two,
        'muOne': tr.mu_one,
        'muTwo': tr.mu_two,
        'initOne': tr.init_one,
        'initTwo': tr.init_two,
        'kernelType': shape_codes[config.kernel.shape],
        'dispA': config.kernel.scale,
        'dispC': config.kernel.power,
        'numIts': config.simulation.n_iterations,
        'maxGen': config.simulation.max_generation,
        'xyFile': config.population.host_file or '',
        'modelType': model_codes[config.simulation.model],
    }
