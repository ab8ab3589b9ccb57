"""
CLI command modules.

Every module in this package is imported by `discover_commands()`; any
function decorated with `@cli_command` is registered on the app.
"""
