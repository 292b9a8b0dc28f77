import os
import yaml
from pathlib import Path

def config_dir():
    """Directory holding the YAML settings (override with INTUNE_ONBOARDING_CONFIG_DIR)."""
    override = os.getenv("INTUNE_ONBOARDING_CONFIG_DIR")
    if override:
        return Path(override)
    return Path(__file__).resolve().parents[3] / "config"

def load_yaml(filename, directory=None):
    """Load a YAML file from the config directory."""
    file_path = Path(directory or config_dir()) / filename
    with open(file_path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}
