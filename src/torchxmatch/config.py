"""
Runtime configuration for torchxmatch.

Chooses thread-pool and coverage-grid defaults that suit the machine the
matcher runs on (laptop, HPC batch job or cloud container), with
environment-variable overrides for batch scripts.
"""

import os
from typing import Any, Dict, Optional

import psutil

# Upper bound on coverage bins per axis in k-d tree matching.
DEFAULT_COVERAGE_MAX_BINS = 10000

# Below this many query rows the k-d tree search stays on the calling thread.
DEFAULT_MIN_ITEMS_FOR_PARALLEL = 2000

DEDUP_STRATEGIES = ("rearrange", "greedy")


class MatchConfig:
    """Tunable parameters shared by the matchers."""

    def __init__(self, num_threads: int = 1,
                 min_items_for_parallel: int = DEFAULT_MIN_ITEMS_FOR_PARALLEL,
                 coverage_max_bins: int = DEFAULT_COVERAGE_MAX_BINS,
                 strategy: str = "rearrange"):
        if int(num_threads) < 1:
            raise ValueError(f"num_threads must be at least 1, got {num_threads}")
        if int(min_items_for_parallel) < 0:
            raise ValueError(
                f"min_items_for_parallel cannot be negative, got {min_items_for_parallel}"
            )
        if int(coverage_max_bins) < 1:
            raise ValueError(
                f"coverage_max_bins must be at least 1, got {coverage_max_bins}"
            )
        if strategy not in DEDUP_STRATEGIES:
            raise ValueError(
                f"Unknown deduplication strategy '{strategy}'. "
                f"Available: {list(DEDUP_STRATEGIES)}"
            )
        self.num_threads = int(num_threads)
        self.min_items_for_parallel = int(min_items_for_parallel)
        self.coverage_max_bins = int(coverage_max_bins)
        self.strategy = strategy

    def __repr__(self) -> str:
        return (f"MatchConfig(num_threads={self.num_threads}, "
                f"min_items_for_parallel={self.min_items_for_parallel}, "
                f"coverage_max_bins={self.coverage_max_bins}, "
                f"strategy='{self.strategy}')")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'num_threads': self.num_threads,
            'min_items_for_parallel': self.min_items_for_parallel,
            'coverage_max_bins': self.coverage_max_bins,
            'strategy': self.strategy,
        }

    @classmethod
    def for_environment(cls) -> 'MatchConfig':
        """Auto-detect a sensible configuration, then apply env overrides."""
        if cls._is_hpc_environment():
            # Batch jobs: only use the cores the scheduler granted us
            threads = _env_int('SLURM_CPUS_PER_TASK') or _env_int('OMP_NUM_THREADS')
            if not threads:
                threads = _physical_cores()
        elif cls._is_cloud_environment():
            # Containers often report the host's cores, not the quota
            threads = min(4, _physical_cores())
        else:
            threads = _physical_cores()

        config = cls(num_threads=max(1, threads))
        config._apply_env_overrides()
        return config

    def _apply_env_overrides(self):
        threads = _env_int('TORCHXMATCH_NUM_THREADS')
        if threads is not None:
            if threads < 1:
                raise ValueError(f"TORCHXMATCH_NUM_THREADS must be >= 1, got {threads}")
            self.num_threads = threads
        min_parallel = _env_int('TORCHXMATCH_MIN_PARALLEL')
        if min_parallel is not None:
            self.min_items_for_parallel = max(0, min_parallel)
        max_bins = _env_int('TORCHXMATCH_COVERAGE_MAX_BINS')
        if max_bins is not None:
            if max_bins < 1:
                raise ValueError(
                    f"TORCHXMATCH_COVERAGE_MAX_BINS must be >= 1, got {max_bins}"
                )
            self.coverage_max_bins = max_bins

    @staticmethod
    def _is_hpc_environment() -> bool:
        """Detect HPC batch system environment."""
        hpc_vars = ['SLURM_JOB_ID', 'PBS_JOBID', 'LSB_JOBID', 'SGE_JOB_ID']
        return any(var in os.environ for var in hpc_vars)

    @staticmethod
    def _is_cloud_environment() -> bool:
        """Detect cloud platform environment."""
        cloud_vars = [
            'AWS_EXECUTION_ENV', 'AWS_LAMBDA_FUNCTION_NAME',
            'GOOGLE_CLOUD_PROJECT', 'GCLOUD_PROJECT',
            'AZURE_FUNCTIONS_ENVIRONMENT', 'KUBERNETES_SERVICE_HOST', 'K_SERVICE'
        ]
        return any(var in os.environ for var in cloud_vars)


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an integer, got '{value}'") from e


def _physical_cores() -> int:
    cores = psutil.cpu_count(logical=False)
    if not cores:
        cores = psutil.cpu_count(logical=True) or 1
    return cores


# Global configuration instance
_config = None


def get_config() -> MatchConfig:
    """Get the global match configuration."""
    global _config
    if _config is None:
        _config = MatchConfig.for_environment()
    return _config


def configure(**overrides) -> MatchConfig:
    """Replace selected fields of the global configuration."""
    global _config
    settings = get_config().to_dict()
    unknown = set(overrides) - set(settings)
    if unknown:
        raise KeyError(f"Unknown configuration keys: {sorted(unknown)}")
    settings.update(overrides)
    _config = MatchConfig(**settings)
    return _config


def configure_for_environment() -> MatchConfig:
    """Re-detect the environment and reset the global configuration."""
    global _config
    _config = MatchConfig.for_environment()
    return _config


def detect_environment_type() -> str:
    """Detect the type of environment we're running in."""
    if MatchConfig._is_hpc_environment():
        return 'hpc'
    elif MatchConfig._is_cloud_environment():
        return 'cloud'
    else:
        return 'local'
