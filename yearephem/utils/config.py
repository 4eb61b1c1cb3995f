# yearephem/utils/config.py
import os
import yaml

DEFAULT_CONFIG_PATH = os.path.join("config", "defaults.yaml")

class AttrDict(dict):
    """Dict that also supports attribute access: cfg.engine and cfg['engine'] both work."""
    def __getattr__(self, item):
        try:
            return self[item]
        except KeyError as e:
            raise AttributeError(item) from e
    def __setattr__(self, key, value):
        self[key] = value

def _to_attr(obj):
    if isinstance(obj, dict):
        return AttrDict({k: _to_attr(v) for k, v in obj.items()})
    if isinstance(obj, list):
        return [_to_attr(x) for x in obj]
    return obj

def load_config(path: str = None):
    """
    Load YAML config from `path` (default: $YEAREPHEM_CONFIG or config/defaults.yaml).
    A missing file yields an empty config, so every setting falls back to code defaults.
    Env overrides:
      - YEAREPHEM_REFINE_PROFILE  -> engine.refine_profile
      - YEAREPHEM_CACHE_CAPACITY  -> cache.capacity
    Returns an AttrDict for convenient access.
    """
    path = path or os.getenv("YEAREPHEM_CONFIG") or DEFAULT_CONFIG_PATH
    data = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"config root must be a mapping: {path}")

    data.setdefault("engine", {})
    data.setdefault("cache", {})

    profile = os.getenv("YEAREPHEM_REFINE_PROFILE")
    if profile:
        data["engine"]["refine_profile"] = profile

    capacity = os.getenv("YEAREPHEM_CACHE_CAPACITY")
    if capacity:
        data["cache"]["capacity"] = int(capacity)

    return _to_attr(data)
