import os
import yaml
import pulumi
from catalogconfig import CatalogSettings
from regioncatalog import RegionCatalogLoader
from typing import Any, Dict

def load_config(file_path: str) -> Dict[str, Any]:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file) or {}

    # Ensure required keys exist
    required_keys = ["catalog_dir"]
    for key in required_keys:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    return config_data

def main(config_path: str = "catalog.yaml"):
    config_data = load_config(config_path)
    settings = CatalogSettings.from_dict(config_data, base_dir=os.path.dirname(os.path.abspath(config_path)))

    try:
        result = RegionCatalogLoader(settings).load()
    except Exception as e:
        pulumi.log.error(f"Failed to load region catalog: {e}")
        raise

    if settings.fail_on_error:
        result.raise_for_failures()

    # Export published entries
    for entry in result.catalog:
        pulumi.export(entry.name, entry.to_document())
    pulumi.export("regions", list(result.catalog.regions))
    return result

if __name__ == "__main__":
    main()
