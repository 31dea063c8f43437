"""Built-in CLI sub-commands for httpstorages.

* :mod:`~httpstorages.commands.storage` -- open, inspect, delete and purge
  stored responses (plain callbacks registered on the root app).
* :mod:`~httpstorages.commands.config` -- view and modify global settings
  (a :class:`typer.Typer` sub-application).
"""
