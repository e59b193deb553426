"""
This module defines the data structures for the khan-flask-app YAML infrastructure file,
together with loading and stack variable resolution.
"""

import re
import yaml
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

REQUIRED_KEYS = ["team", "service", "environment", "region"]

VARIABLE_PATTERN = re.compile(r"\$\{var\.([A-Za-z_]\w*)\}")

@dataclass
class Variable:
    name: str
    default: Optional[str] = None
    required: bool = False
    pattern: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, data: Optional[Dict[str, Any]]) -> "Variable":
        data = data or {}
        default = data.get("default")
        return cls(
            name=name,
            default=str(default) if default is not None else None,
            required=bool(data.get("required", False)),
            pattern=data.get("pattern"),
        )

@dataclass
class GCPResource:
    name: str
    type: str
    args: Dict[str, Any]
    custom_name: Optional[str] = None
    existing: bool = False
    depends_on: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GCPResource":
        args = dict(data.get("args") or {})
        # "existing" is accepted inside args as well as at entry level
        existing = bool(data.get("existing", args.pop("existing", False)))
        return cls(
            name=data["name"],
            type=data["type"],
            args=args,
            custom_name=data.get("custom_name"),
            existing=existing,
            depends_on=list(data.get("depends_on") or []),
        )

@dataclass
class Config:
    team: str
    service: str
    environment: str
    region: str
    labels: Optional[Dict[str, str]] = None
    variables: Optional[List[Variable]] = None
    gcp_resources: Optional[List[GCPResource]] = None
    outputs: Optional[Dict[str, str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        return cls(
            team=str(data["team"]),
            service=str(data["service"]),
            environment=str(data["environment"]),
            region=str(data["region"]),
            labels=data.get("labels"),
            variables=parse_variables(data),
            gcp_resources=[GCPResource.from_dict(entry) for entry in data.get("gcp_resources") or []],
            outputs=data.get("outputs"),
        )

def load_config(file_path: str) -> Dict[str, Any]:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file) or {}

    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    return config_data

def parse_variables(config_data: Dict[str, Any]) -> List[Variable]:
    declared = config_data.get("variables") or {}
    return [Variable.from_dict(name, spec) for name, spec in declared.items()]

def resolve_variables(declared: List[Variable], lookup: Callable[[str], Optional[str]]) -> Dict[str, str]:
    """
    Resolve declared variables against stack configuration.

    ``lookup`` returns the configured value for a name or None, e.g. ``pulumi.Config().get``.
    """
    values: Dict[str, str] = {}
    for variable in declared:
        value = lookup(variable.name)
        if value is None:
            value = variable.default
        if value is None:
            if variable.required:
                raise ValueError(f"Missing required variable: {variable.name}")
            continue
        if variable.pattern and not re.fullmatch(variable.pattern, value):
            raise ValueError(f"Variable '{variable.name}' value '{value}' does not match '{variable.pattern}'")
        values[variable.name] = value

    if "repo_name" in values:
        values.update(split_repo_name(values["repo_name"]))
    return values

def split_repo_name(repo_name: str) -> Dict[str, str]:
    owner, sep, repo = repo_name.partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise ValueError(f"repo_name must look like 'owner/repo', got '{repo_name}'")
    return {"repo_owner": owner, "repo": repo}

def apply_variables(value: Any, variables: Dict[str, str]) -> Any:
    """Substitute ``${var.name}`` in every string of a nested structure."""
    if isinstance(value, dict):
        return {k: apply_variables(v, variables) for k, v in value.items()}
    elif isinstance(value, list):
        return [apply_variables(item, variables) for item in value]
    elif isinstance(value, str):
        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name not in variables:
                raise ValueError(f"Unknown variable '{name}' referenced in '{value}'")
            return variables[name]
        return VARIABLE_PATTERN.sub(substitute, value)
    else:
        return value
