import json
import os

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.json")

DEFAULTS = {
    "gemini_api_key": "",
    "generation_model": "gemini-2.5-flash",
    "analysis_model": "gemini-2.5-flash",
    "image_model": "gemini-2.5-flash-image",
    "media_placement": "flat",
}

_ENV_FALLBACKS = {
    "gemini_api_key": "GEMINI_API_KEY",
    "generation_model": "MEDFLASH_GENERATION_MODEL",
    "analysis_model": "MEDFLASH_ANALYSIS_MODEL",
    "image_model": "MEDFLASH_IMAGE_MODEL",
    "media_placement": "MEDFLASH_MEDIA_PLACEMENT",
}


def _config_path() -> str:
    return os.environ.get("MEDFLASH_CONFIG_PATH") or DEFAULT_CONFIG_PATH


def _load() -> dict:
    path = _config_path()
    if os.path.isfile(path):
        with open(path, encoding="utf-8") as f:
            return {**DEFAULTS, **json.load(f)}
    return {**DEFAULTS}


def _save(cfg: dict):
    with open(_config_path(), "w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)


def _get(key: str) -> str:
    """Config file value first, then env var, then the built-in default."""
    stored = _load().get(key, "")
    if stored and stored != DEFAULTS[key]:
        return stored
    return os.environ.get(_ENV_FALLBACKS[key], "") or stored or DEFAULTS[key]


def get_all() -> dict:
    """Return config with the API key masked."""
    cfg = _load()
    key = cfg.get("gemini_api_key", "")
    cfg["gemini_api_key_set"] = bool(key or os.environ.get("GEMINI_API_KEY"))
    cfg["gemini_api_key"] = ""
    return cfg


def update(values: dict):
    """Merge provided values into config. Empty gemini_api_key means keep existing."""
    cfg = _load()
    for key in ("generation_model", "analysis_model", "image_model", "media_placement"):
        if values.get(key):
            cfg[key] = values[key]
    if values.get("gemini_api_key"):
        cfg["gemini_api_key"] = values["gemini_api_key"]
    _save(cfg)


def get_gemini_api_key() -> str:
    return _get("gemini_api_key").strip()


def get_model(role: str) -> str:
    """Return the model name for `role` ('generation', 'analysis' or 'image')."""
    return _get(f"{role}_model")


def get_media_placement() -> str:
    return _get("media_placement")
