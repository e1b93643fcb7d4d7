from orbit_smoke.cli import cli

cli()
