"""
Configuration checks run before any resource is registered.

They work on the variable-substituted YAML (references are still in their ``ref:`` form)
and return human readable problems instead of raising, so that every problem can be
reported in a single ``pulumi up``.
"""

import yaml
from typing import Any, Dict, List, Optional

CONTAINER_DECLARATION_KEY = "gce-container-declaration"
BUILD_TAG = "$SHORT_SHA"
DOCKER_BUILDER = "gcr.io/cloud-builders/docker"
GCLOUD_BUILDERS = ("gcr.io/cloud-builders/gcloud", "gcr.io/google.com/cloudsdktool/cloud-sdk")
TAG_FLAGS = ("--tag=", "-t=")

def _resources_of_type(config_data: Dict[str, Any], resource_type: str) -> List[Dict[str, Any]]:
    return [entry for entry in config_data.get("gcp_resources") or [] if entry.get("type") == resource_type]

def _app_setting(config_data: Dict[str, Any], key: str, default: Any) -> Any:
    return (config_data.get("app") or {}).get(key, default)

def image_repository(config_data: Dict[str, Any], variables: Dict[str, str]) -> str:
    image_name = _app_setting(config_data, "image_name", "khan-flask-app")
    return f"gcr.io/{variables.get('project_id', '')}/{image_name}"

def _port_allowed(ports: List[Any], port: int) -> bool:
    # no ports means every port of the protocol
    if not ports:
        return True
    for entry in ports:
        low, sep, high = str(entry).partition("-")
        try:
            if int(low) <= port <= int(high if sep else low):
                return True
        except ValueError:
            continue
    return False

def check_firewall(config_data: Dict[str, Any], port: Optional[int] = None, source_range: str = "0.0.0.0/0") -> List[str]:
    port = int(port if port is not None else _app_setting(config_data, "port", 5000))
    for entry in _resources_of_type(config_data, "compute.Firewall"):
        args = entry.get("args") or {}
        if source_range not in (args.get("source_ranges") or []):
            continue
        for allow in args.get("allows") or []:
            if allow.get("protocol") not in ("tcp", "all"):
                continue
            if _port_allowed(allow.get("ports") or [], port):
                return []
    return [f"No firewall rule allows tcp:{port} from {source_range}"]

def check_container_image(config_data: Dict[str, Any], variables: Dict[str, str]) -> List[str]:
    instances = _resources_of_type(config_data, "compute.Instance")
    if len(instances) != 1:
        return [f"Expected exactly one compute.Instance, found {len(instances)}"]

    instance = instances[0]
    declaration = ((instance.get("args") or {}).get("metadata") or {}).get(CONTAINER_DECLARATION_KEY)
    if not declaration:
        return [f"Instance '{instance['name']}' has no '{CONTAINER_DECLARATION_KEY}' metadata"]

    try:
        document = yaml.safe_load(declaration)
    except yaml.YAMLError as e:
        return [f"Instance '{instance['name']}' container declaration is not valid YAML: {e}"]

    spec = document.get("spec") if isinstance(document, dict) else None
    if not isinstance(spec, dict):
        return [f"Instance '{instance['name']}' container declaration must be a mapping with a 'spec' mapping"]

    containers = spec.get("containers") or []
    if not isinstance(containers, list) or len(containers) != 1:
        count = len(containers) if isinstance(containers, list) else 0
        return [f"Instance '{instance['name']}' must declare exactly one container, found {count}"]
    if not isinstance(containers[0], dict):
        return [f"Instance '{instance['name']}' container entry must be a mapping"]

    expected = f"{image_repository(config_data, variables)}:latest"
    image = containers[0].get("image")
    if image != expected:
        return [f"Instance '{instance['name']}' runs image '{image}', expected '{expected}'"]
    return []

def _step_kind(step: Dict[str, Any]) -> Optional[str]:
    args = [str(a) for a in step.get("args") or []]
    if not args:
        return None
    builder = step.get("name")
    entrypoint = step.get("entrypoint")
    if builder == DOCKER_BUILDER and entrypoint in (None, "docker") and args[0] in ("build", "push"):
        return f"docker {args[0]}"
    is_gcloud = entrypoint == "gcloud" or (builder == GCLOUD_BUILDERS[0] and entrypoint is None)
    if is_gcloud and builder in GCLOUD_BUILDERS and "update-container" in args:
        return "update-container"
    return None

def _image_arguments(args: List[Any], repository: str) -> List[str]:
    images = []
    for arg in args:
        if not isinstance(arg, str):
            continue
        for flag in TAG_FLAGS:
            if arg.startswith(flag):
                arg = arg[len(flag):]
                break
        if arg.startswith("gcr.io/") or repository in arg:
            images.append(arg)
    return images

def check_build_steps(config_data: Dict[str, Any], variables: Dict[str, str]) -> List[str]:
    triggers = _resources_of_type(config_data, "cloudbuild.Trigger")
    if not triggers:
        return ["No cloudbuild.Trigger declared"]

    problems = []
    expected_image = f"{image_repository(config_data, variables)}:{BUILD_TAG}"
    for trigger in triggers:
        name = trigger["name"]
        build = (trigger.get("args") or {}).get("build") or {}
        steps = build.get("steps") or []

        kinds = [_step_kind(step) for step in steps]
        if kinds != ["docker build", "docker push", "update-container"]:
            problems.append(f"Trigger '{name}' steps are {kinds}, expected docker build, docker push, gcloud update-container")

        for index, step in enumerate(steps):
            step_images = _image_arguments(step.get("args") or [], image_repository(config_data, variables))
            if not step_images:
                problems.append(f"Trigger '{name}' step {index} does not reference the image")
            for image in step_images:
                if image != expected_image:
                    problems.append(f"Trigger '{name}' step {index} uses '{image}', expected '{expected_image}'")

        for image in build.get("images") or []:
            if image != expected_image:
                problems.append(f"Trigger '{name}' publishes '{image}', expected '{expected_image}'")
    return problems

def check_zone_in_region(variables: Dict[str, str]) -> List[str]:
    region, zone = variables.get("region"), variables.get("zone")
    if region and zone and not zone.startswith(f"{region}-"):
        return [f"Zone '{zone}' is not in region '{region}'"]
    return []

def run_checks(config_data: Dict[str, Any], variables: Dict[str, str]) -> List[str]:
    problems: List[str] = []
    problems.extend(check_zone_in_region(variables))
    problems.extend(check_firewall(config_data))
    problems.extend(check_container_image(config_data, variables))
    problems.extend(check_build_steps(config_data, variables))
    return problems
