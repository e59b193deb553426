import pulumi
import inspect
import pulumi_gcp as gcp
import re
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from config import Config, GCPResource

# Short region codes used in generated resource names
GCP_REGION_ABBREVIATIONS = {
    "asia-east1": "ae1",
    "asia-northeast1": "an1",
    "asia-southeast1": "ase1",
    "australia-southeast1": "aus1",
    "europe-north1": "en1",
    "europe-west1": "ew1",
    "europe-west2": "ew2",
    "europe-west3": "ew3",
    "europe-west4": "ew4",
    "northamerica-northeast1": "nn1",
    "southamerica-east1": "se1",
    "us-central1": "usc1",
    "us-east1": "use1",
    "us-east4": "use4",
    "us-west1": "usw1",
    "us-west2": "usw2",
}

# Keyword parameters of generated resource classes that are never resource properties
NON_PROPERTY_PARAMS = {"__self__", "self", "resource_name", "opts", "__props__", "args", "kwargs"}

REF_NAME = re.compile(r"[A-Za-z][\w-]*")
REF_TOKEN = re.compile(r"\.([A-Za-z_]\w*)|\[(\d+)\]")
EMBEDDED_REF = re.compile(r"\$\{ref\.([^}]+)\}")

def to_snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()

def split_reference(ref_text: str) -> Tuple[str, List[Union[str, int]]]:
    """Split ``name.attr[0].attr`` into the resource name and its attribute path."""
    match = REF_NAME.match(ref_text)
    if not match:
        raise ValueError(f"Malformed reference '{ref_text}'")
    path: List[Union[str, int]] = []
    pos = match.end()
    while pos < len(ref_text):
        token = REF_TOKEN.match(ref_text, pos)
        if not token:
            raise ValueError(f"Malformed reference '{ref_text}'")
        path.append(token.group(1) if token.group(1) is not None else int(token.group(2)))
        pos = token.end()
    return match.group(0), path or ["id"]

def resolve_reference(ref_text: str, resources: Dict[str, Any]) -> Any:
    ref_res, path = split_reference(ref_text)
    if ref_res not in resources:
        raise ValueError(f"Referenced resource '{ref_res}' not found.")
    value = resources[ref_res]
    for step in path:
        if isinstance(step, int):
            value = value[step]
            continue
        # attribute access on a pulumi.Output is lifted, so only the first hop can be missing
        value = getattr(value, step, None)
        if value is None:
            raise ValueError(f"Attribute '{step}' not found on resource '{ref_res}'")
    return value

def resolve_value(value: Any, resources: Dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: resolve_value(v, resources) for k, v in value.items()}
    elif isinstance(value, list):
        return [resolve_value(item, resources) for item in value]
    elif isinstance(value, str):
        if value.startswith("ref:"):
            return resolve_reference(value[len("ref:"):], resources)
        if EMBEDDED_REF.search(value):
            parts: List[Any] = []
            last = 0
            for match in EMBEDDED_REF.finditer(value):
                parts.append(value[last:match.start()])
                parts.append(resolve_reference(match.group(1), resources))
                last = match.end()
            parts.append(value[last:])
            return pulumi.Output.concat(*[part for part in parts if part != ""])
        return value
    else:
        return value

def resource_parameters(resource_class: type) -> Set[str]:
    # Generated classes hide their properties behind overloaded __init__; _internal_init lists them.
    init = getattr(resource_class, "_internal_init", None) or resource_class.__init__
    return set(inspect.signature(init).parameters) - NON_PROPERTY_PARAMS

class GCPResourceBuilder:
    def __init__(self, config_data: dict, variables: Optional[Dict[str, str]] = None):
        self.config = Config.from_dict(config_data)
        self.variables = variables or {}
        self.resources: Dict[str, Any] = {}

    @property
    def region(self) -> str:
        return self.variables.get("region") or self.config.region or "us-central1"

    def get_abbreviation(self, region: str) -> str:
        return GCP_REGION_ABBREVIATIONS.get(region.lower(), region.split("-")[0].lower())

    def generate_resource_name(self, base_name: str) -> str:
        team = self.config.team.strip().lower()
        service = self.config.service.strip().lower()
        env = self.config.environment.strip().lower()
        reg_abbr = self.get_abbreviation(self.region)
        return f"{team}-{service}-{env}-{reg_abbr}-{base_name}".lower()

    def resolve_args(self, args: dict) -> dict:
        return {key: resolve_value(value, self.resources) for key, value in args.items()}

    def _apply_common_parameters(self, resolved_args: dict, params: Set[str]) -> dict:
        # GCP resources carry 'labels' rather than 'tags'
        if "labels" in params:
            if self.config.labels:
                resolved_args.setdefault("labels", dict(self.config.labels))
        else:
            resolved_args.pop("labels", None)

        defaults = {
            "project": self.variables.get("project_id"),
            "region": self.region,
            "zone": self.variables.get("zone"),
        }
        for key, default in defaults.items():
            if key in params:
                if key not in resolved_args and default:
                    resolved_args[key] = default
            else:
                resolved_args.pop(key, None)
        return resolved_args

    def _lookup_existing(self, module: Any, entry: GCPResource, class_name: str, resolved_args: dict) -> Optional[Any]:
        get_func_name = f"get_{to_snake_case(class_name)}"
        get_func = getattr(module, get_func_name, None)
        if get_func is None:
            pulumi.log.warn(f"Function '{get_func_name}' not found for '{entry.type}'. Proceeding to create new resource '{entry.name}'.")
            return None
        accepted = set(inspect.signature(get_func).parameters) - {"opts"}
        get_params = {k: v for k, v in resolved_args.items() if k in accepted}
        if not get_params:
            pulumi.log.warn(f"No lookup parameters for existing resource '{entry.name}'. Proceeding to create it.")
            return None
        try:
            existing_resource = get_func(**get_params)
        except Exception as e:
            pulumi.log.warn(f"Failed to retrieve existing resource '{entry.name}': {e}. Proceeding with creation.")
            return None
        pulumi.log.info(f"Fetched existing resource '{entry.name}' via '{get_func_name}' with {sorted(get_params)}")
        return existing_resource

    def _resource_options(self, entry: GCPResource) -> Optional[pulumi.ResourceOptions]:
        if not entry.depends_on:
            return None
        missing = [name for name in entry.depends_on if name not in self.resources]
        if missing:
            raise ValueError(f"Resource '{entry.name}' depends on undeclared resources {missing}")
        return pulumi.ResourceOptions(depends_on=[self.resources[name] for name in entry.depends_on])

    def build(self):
        for entry in self.config.gcp_resources or []:
            module_name, class_name = entry.type.rsplit(".", 1)
            module = getattr(gcp, module_name, None)
            if not module:
                pulumi.log.warn(f"GCP module '{module_name}' not found. Skipping '{entry.name}'.")
                continue
            ResourceClass = getattr(module, class_name, None)
            if ResourceClass is None:
                pulumi.log.warn(f"Resource class '{class_name}' not found in module '{module_name}'. Skipping '{entry.name}'.")
                continue

            params = resource_parameters(ResourceClass)
            resolved_args = self._apply_common_parameters(self.resolve_args(entry.args), params)

            if entry.existing:
                existing_resource = self._lookup_existing(module, entry, class_name, resolved_args)
                if existing_resource is not None:
                    self.resources[entry.name] = existing_resource
                    continue

            pulumi_name = entry.custom_name or self.generate_resource_name(entry.name)
            pulumi.log.debug(f"Resolved arguments for '{entry.name}': {sorted(resolved_args)}")
            self.resources[entry.name] = ResourceClass(pulumi_name, opts=self._resource_options(entry), **resolved_args)
            pulumi.log.info(f"Created resource: {pulumi_name} ({entry.type})")

    def resolve_outputs(self) -> Dict[str, Any]:
        return {name: resolve_value(value, self.resources) for name, value in (self.config.outputs or {}).items()}
