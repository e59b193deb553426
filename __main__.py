import pulumi
from checks import run_checks
from config import apply_variables, load_config, parse_variables, resolve_variables
from gcpbuilder import GCPResourceBuilder

def main():
    # Load YAML configuration and bind it to this stack's variables.
    config_data = load_config("config.yaml")
    variables = resolve_variables(parse_variables(config_data), pulumi.Config().get)
    config_data = apply_variables(config_data, variables)

    problems = run_checks(config_data, variables)
    for problem in problems:
        pulumi.log.error(problem)
    if problems:
        raise ValueError(f"{len(problems)} configuration check(s) failed")

    try:
        builder = GCPResourceBuilder(config_data, variables)
    except Exception as e:
        pulumi.log.error(f"Failed to initialize GCPResourceBuilder: {e}")
        raise

    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    for name, value in builder.resolve_outputs().items():
        try:
            pulumi.export(name, value)
        except Exception as e:
            pulumi.log.warn(f"Failed to export output '{name}': {e}")

if __name__ == "__main__":
    main()
