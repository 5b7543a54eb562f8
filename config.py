import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_REGISTRY = "registry.internal.company.com"
DEFAULT_PREFIX = "dockerhub"
DEFAULT_PARALLEL_JOBS = 4
DEFAULT_RELEASE_NAME = "test-release"
OUTPUT_FORMATS = ("json", "text")

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off", ""}


class ConfigError(ValueError):
    """
    Raised for invalid configuration values from the environment or CLI.
    """


def _parse_bool(name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean (true/false), got {value!r}")


def _parse_jobs(value) -> int:
    try:
        jobs = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"PARALLEL_JOBS must be an integer, got {value!r}")
    if jobs < 1:
        raise ConfigError(f"PARALLEL_JOBS must be at least 1, got {jobs}")
    return jobs


@dataclass(frozen=True)
class MirrorConfig:
    """
    Process-wide settings, built once and passed to each component.
    """
    registry: str = DEFAULT_REGISTRY
    prefix: str = DEFAULT_PREFIX
    dry_run: bool = False
    parallel_jobs: int = DEFAULT_PARALLEL_JOBS
    output_format: str = "json"
    debug: bool = False
    release_name: str = DEFAULT_RELEASE_NAME

    def __post_init__(self):
        if not self.registry or not self.registry.strip("/"):
            raise ConfigError("MIRROR_REGISTRY must not be empty")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(f"OUTPUT_FORMAT must be one of {', '.join(OUTPUT_FORMATS)}, got {self.output_format!r}")
        if self.parallel_jobs < 1:
            raise ConfigError(f"PARALLEL_JOBS must be at least 1, got {self.parallel_jobs}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MirrorConfig":
        env = os.environ if environ is None else environ
        return cls(
            registry=env.get("MIRROR_REGISTRY") or DEFAULT_REGISTRY,
            prefix=env.get("MIRROR_PREFIX") or DEFAULT_PREFIX,
            dry_run=_parse_bool("DRY_RUN", env.get("DRY_RUN", "false")),
            parallel_jobs=_parse_jobs(env.get("PARALLEL_JOBS") or DEFAULT_PARALLEL_JOBS),
            output_format=(env.get("OUTPUT_FORMAT") or "json").strip().lower(),
            debug=_parse_bool("DEBUG", env.get("DEBUG", "false")),
            release_name=env.get("HELM_RELEASE_NAME") or DEFAULT_RELEASE_NAME,
        )

    @classmethod
    def from_args(cls, args, environ: Optional[Mapping[str, str]] = None) -> "MirrorConfig":
        """
        CLI flags win over environment variables, which win over defaults.
        """
        base = cls.from_env(environ)
        prefix = getattr(args, "prefix", None)
        parallel = getattr(args, "parallel", None)
        return cls(
            registry=getattr(args, "registry", None) or base.registry,
            prefix=base.prefix if prefix is None else prefix,
            dry_run=getattr(args, "dry_run", False) or base.dry_run,
            parallel_jobs=base.parallel_jobs if parallel is None else _parse_jobs(parallel),
            output_format=getattr(args, "output", None) or base.output_format,
            debug=getattr(args, "debug", False) or base.debug,
            release_name=getattr(args, "release_name", None) or base.release_name,
        )
