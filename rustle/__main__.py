from rustle.cli import app

app()
