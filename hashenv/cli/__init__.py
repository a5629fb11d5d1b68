from .main import command_line_entry_point, help_on_exceptions
from . import manifest_cli, store_cli
