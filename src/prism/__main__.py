from prism.cli.app import app

app()
