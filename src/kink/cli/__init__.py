import typer
from typing_extensions import Annotated

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

app = typer.Typer(
    help="Kink: Cluster API control planes hosted in Kubernetes",
    add_completion=False,
)


@app.command("operator")
def run_operator():
    """Run the Kubernetes operator (connects to cluster)."""
    from kink.main import main

    main()


@app.command("generate-crds")
def generate_crds(
    output: Annotated[
        str, typer.Option("-o", "--output", help="Output directory")
    ] = "crds/generated",
    force: Annotated[bool, typer.Option("--force", help="Force regeneration")] = False,
    validate: Annotated[
        bool, typer.Option("--validate", help="Validate generated CRDs")
    ] = False,
):
    """Generate CRD YAML files from pydantic models."""
    from pathlib import Path
    from kink.crd.generator import KinkCRDManager

    output_dir = Path(output)
    manager = KinkCRDManager(output_dir=output_dir)

    try:
        generated = manager.generate_all_crds(force=force)
    except (OSError, ValueError) as e:
        typer.echo(f"Failed to generate CRDs: {e}")
        raise typer.Exit(1)

    if not generated:
        typer.echo("No CRDs generated (models unchanged)")
        return

    typer.echo(f"CRDs generated successfully in {output_dir}")
    if validate:
        if manager.validate_generated_crds():
            typer.echo("CRD validation passed")
        else:
            typer.echo("CRD validation failed")
            raise typer.Exit(1)


@app.command("validate-models")
def validate_models():
    """Validate CRD models without generating files."""
    from kink.crd.generator import KinkCRDManager

    manager = KinkCRDManager()
    try:
        crds = manager.get_crds_as_dict()
    except (KeyError, ValueError) as e:
        typer.echo(f"Model validation failed: {e}")
        raise typer.Exit(1)

    models = manager.registry.get_all_models()
    typer.echo(f"Validated {len(models)} CRD models")
    for key in models.keys():
        typer.echo(f"  - {key}")
    typer.echo(f"Generated {len(crds)} CRDs in memory")


@app.command("catalog")
def show_catalog():
    """Print the certificate tree every control plane is issued."""
    from kink.errors import CatalogError
    from kink.services.certificates import build_tree, get_certs
    from kink.services.pki import usage_name

    try:
        tree = build_tree(get_certs())
    except CatalogError as e:
        typer.echo(f"Certificate catalog is invalid: {e}")
        raise typer.Exit(1)

    for root, leaves in tree.items():
        typer.echo(f"{root.name} ({root.long_name})")
        for leaf in leaves:
            usages = ", ".join(usage_name(u) for u in leaf.config.usages)
            typer.echo(f"  - {leaf.name} ({leaf.long_name}) CN={leaf.config.common_name} [{usages}]")
