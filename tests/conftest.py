"""Pytest configuration and shared fixtures."""

import copy
from pathlib import Path
from typing import Any, Dict

import pulumi
import pytest

from config import apply_variables, load_config, parse_variables, resolve_variables

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

STACK_VALUES = {
    "project_id": "khan-test",
    "repo_name": "khan-academy/flask-app",
}

NAT_IP = "203.0.113.10"


class KhanMocks(pulumi.runtime.Mocks):
    """Echo inputs back as outputs and fill in the computed fields the program reads."""

    def __init__(self):
        self.registered = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        self.registered.append(args.name)
        outputs = dict(args.inputs)
        if args.typ == "gcp:serviceaccount/account:Account":
            project = args.inputs.get("project", "unknown")
            outputs["email"] = f"{args.inputs['accountId']}@{project}.iam.gserviceaccount.com"
        if args.typ == "gcp:compute/instance:Instance":
            outputs["networkInterfaces"] = [
                dict(nic, accessConfigs=[{"natIp": NAT_IP}]) for nic in args.inputs.get("networkInterfaces", [])
            ]
        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        if args.token == "gcp:compute/getNetwork:getNetwork":
            name = args.args.get("name")
            return {
                "id": f"projects/khan-test/global/networks/{name}",
                "name": name,
                "selfLink": f"https://www.googleapis.com/compute/v1/projects/khan-test/global/networks/{name}",
            }
        return {}


MOCKS = KhanMocks()
pulumi.runtime.set_mocks(MOCKS, preview=False)


@pytest.fixture
def raw_config() -> Dict[str, Any]:
    return load_config(str(CONFIG_PATH))


@pytest.fixture
def variables(raw_config: Dict[str, Any]) -> Dict[str, str]:
    return resolve_variables(parse_variables(raw_config), STACK_VALUES.get)


@pytest.fixture
def stack_config(raw_config: Dict[str, Any], variables: Dict[str, str]) -> Dict[str, Any]:
    """The shipped config.yaml with this test stack's variables applied."""
    return apply_variables(copy.deepcopy(raw_config), variables)


def field(obj: Any, name: str) -> Any:
    """Read a property from an output type or a plain dict."""
    if hasattr(obj, name):
        return getattr(obj, name)
    return obj[name]
