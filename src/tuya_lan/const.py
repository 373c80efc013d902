import hashlib
import os

from tuya_lan import __version__

__all__ = [
    "BROADCAST_KEY",
    "DISCOVERY_KEY",
    "TUYA_LAN_BIND_HOST",
    "TUYA_LAN_BIND_PORT",
    "TUYA_LAN_BROADCAST_ADDRESS",
    "TUYA_LAN_COMMAND_PORT",
    "TUYA_LAN_DEBUG",
    "TUYA_LAN_DISCOVERY_PORT",
    "TUYA_LAN_LOG_FORMAT",
    "TUYA_LAN_LOG_HUMAN_OUTPUT",
    "TUYA_LAN_LOG_JSON_FILE",
    "TUYA_LAN_LOG_NAME",
    "TUYA_LAN_METRICS_PORT",
    "TUYA_LAN_NEGOTIATION_PORT",
    "TUYA_LAN_NEGOTIATION_TIMEOUT_MS",
    "TUYA_LAN_OFFLINE_THRESHOLD",
    "TUYA_LAN_PERF_THRESHOLD_MS",
    "TUYA_LAN_PERF_TRACKING",
    "TUYA_LAN_VERSION",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
TUYA_LAN_LOG_NAME: str = "tuya_lan"
TUYA_LAN_VERSION: str = __version__

# Well-known protocol keys. Both are public constants of the Tuya LAN protocol.
DISCOVERY_KEY: bytes = hashlib.md5(b"yGAdlopoPVldABfn").digest()
BROADCAST_KEY: bytes = bytes.fromhex("6f36045d84b042e01e29b7c819e37cf7")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


TUYA_LAN_DEBUG: bool = os.environ.get("TUYA_LAN_DEBUG", "0").casefold() in YES_ANSWER

# Network
TUYA_LAN_BIND_HOST: str = os.environ.get("TUYA_LAN_BIND_HOST", "0.0.0.0")
TUYA_LAN_BIND_PORT: int = _env_int("TUYA_LAN_BIND_PORT", 0)
TUYA_LAN_BROADCAST_ADDRESS: str = os.environ.get("TUYA_LAN_BROADCAST_ADDRESS", "255.255.255.255")
TUYA_LAN_NEGOTIATION_PORT: int = _env_int("TUYA_LAN_NEGOTIATION_PORT", 6669)
TUYA_LAN_COMMAND_PORT: int = _env_int("TUYA_LAN_COMMAND_PORT", 6668)
TUYA_LAN_DISCOVERY_PORT: int = _env_int("TUYA_LAN_DISCOVERY_PORT", 6667)

# Negotiation
TUYA_LAN_NEGOTIATION_TIMEOUT_MS: int = _env_int("TUYA_LAN_NEGOTIATION_TIMEOUT_MS", 5000)
_offline_threshold = _env_int("TUYA_LAN_OFFLINE_THRESHOLD", 3)
TUYA_LAN_OFFLINE_THRESHOLD: int = _offline_threshold if _offline_threshold > 0 else 3

# Logging Configuration
TUYA_LAN_LOG_FORMAT: str = os.environ.get("TUYA_LAN_LOG_FORMAT", "human")  # "json", "human", or "both"
TUYA_LAN_LOG_JSON_FILE: str = os.environ.get("TUYA_LAN_LOG_JSON_FILE", "")  # empty disables file output
TUYA_LAN_LOG_HUMAN_OUTPUT: str = os.environ.get("TUYA_LAN_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# Performance Instrumentation
TUYA_LAN_PERF_TRACKING: bool = os.environ.get("TUYA_LAN_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("TUYA_LAN_PERF_THRESHOLD_MS", "100")
TUYA_LAN_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 100

# Metrics
TUYA_LAN_METRICS_PORT: int = _env_int("TUYA_LAN_METRICS_PORT", 9400)
