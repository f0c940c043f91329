from prcanary.cli import app

app()
