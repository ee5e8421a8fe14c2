from git_app_auth.main import cli

cli()
