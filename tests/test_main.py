"""Tests for the program entry point."""

import importlib.util
import os
import pytest
import pulumi
import yaml

MAIN_PATH = os.path.join(os.path.dirname(__file__), os.pardir, "__main__.py")


@pytest.fixture
def program():
    spec = importlib.util.spec_from_file_location("region_catalog_program", MAIN_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def exports(monkeypatch):
    exported = {}
    monkeypatch.setattr(pulumi, "export", lambda name, value: exported.__setitem__(name, value))
    return exported


def write_config(tmp_path, **values):
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(values))
    return str(path)


class TestLoadConfig:
    def test_missing_required_key(self, program, tmp_path):
        path = write_config(tmp_path, register="chef-server")

        with pytest.raises(ValueError, match="catalog_dir"):
            program.load_config(path)


class TestMain:
    def test_exports_entries_and_regions(self, program, exports, region_document, write_region, tmp_path, pulumi_log):
        (tmp_path / "clouds").mkdir()
        write_region("sydney.yaml", region_document, directory=tmp_path / "clouds")
        path = write_config(tmp_path, catalog_dir="clouds", register="chef-server", version="12.4.1")

        result = program.main(path)

        assert result.ok
        assert exports["regions"] == ["ap-southeast-2"]
        assert exports["ec2-ap-southeast-2"]["attributes"]["imagemap"]["centos-7.0"] == "ami-bd721587"

    def test_failures_logged_and_skipped(self, program, exports, write_region, tmp_path, pulumi_log):
        (tmp_path / "clouds").mkdir()
        write_region("broken.yaml", "name: [unclosed\n", directory=tmp_path / "clouds")
        path = write_config(tmp_path, catalog_dir="clouds")

        result = program.main(path)

        assert len(result.failures) == 1
        assert exports["regions"] == []
        assert len([msg for msg in pulumi_log.messages["error"] if "broken.yaml" in msg]) == 1

    def test_fail_on_error(self, program, exports, write_region, tmp_path, pulumi_log):
        (tmp_path / "clouds").mkdir()
        write_region("broken.yaml", "name: [unclosed\n", directory=tmp_path / "clouds")
        path = write_config(tmp_path, catalog_dir="clouds", fail_on_error=True)

        from regioncatalog import CatalogLoadError

        with pytest.raises(CatalogLoadError):
            program.main(path)
