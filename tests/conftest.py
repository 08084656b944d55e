import copy
import pytest
import yaml
from typing import Any, Dict


SYDNEY_DOCUMENT: Dict[str, Any] = {
    "name": "ec2-ap-southeast-2",
    "description": "Amazon Web Services - AP Southeast 2 Region (Sydney)",
    "auth": "ec2secretkey",
    "cookbook": "ec2",
    "provides": {"service": "compute"},
    "attributes": {
        "region": "ap-southeast-2",
        "availability_zones": ["ap-southeast-2a", "ap-southeast-2b", "ap-southeast-2c"],
        "imagemap": {"centos-7.0": "ami-bd721587", "ubuntu-14.04": "ami-7388cd19"},
        "repo_map": {"centos-7.0": "sudo yum -d0 -e0 -y install gcc-c++"},
    },
}


class LogRecorder:
    def __init__(self):
        self.messages = {"info": [], "warn": [], "error": []}

    def recorder(self, level):
        def record(msg, *args, **kwargs):
            self.messages[level].append(msg)
        return record


@pytest.fixture
def region_document():
    """Fresh copy of a valid Sydney region document."""
    return copy.deepcopy(SYDNEY_DOCUMENT)


@pytest.fixture
def pulumi_log(monkeypatch):
    """Capture pulumi.log calls instead of writing to stderr."""
    import pulumi

    recorder = LogRecorder()
    for level in ("info", "warn", "error"):
        monkeypatch.setattr(pulumi.log, level, recorder.recorder(level))
    return recorder


@pytest.fixture
def write_region(tmp_path):
    def _write(filename, document, directory=None):
        target = (directory or tmp_path) / filename
        if isinstance(document, str):
            target.write_text(document)
        else:
            target.write_text(yaml.safe_dump(document))
        return target
    return _write
