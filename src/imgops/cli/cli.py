"""CLI application for building custom VM images on Azure."""

import typer

from imgops.cli.commands.build import build
from imgops.cli.commands.images import cleanup, images, names

app = typer.Typer(
    help="imgops - golden image builder for Azure lab environments",
    no_args_is_help=True,
)

app.command("build", help="Provision, customize, generalize and capture an image.")(build)
app.command("names", help="Show the resource names of a build.")(names)
app.command("images", help="List captured images of a job.")(images)
app.command("cleanup", help="Delete leftover per-build resources.")(cleanup)


if __name__ == "__main__":
    app()
