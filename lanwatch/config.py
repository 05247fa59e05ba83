# lanwatch/config.py
from dynaconf import Dynaconf

settings = Dynaconf(
    envvar_prefix="LANWATCH",
    settings_files=['config/settings.toml'],
)


def section(name: str, source=None) -> dict:
    """Returns a settings table as a plain dict, empty when it is not configured."""
    value = (source if source is not None else settings).get(name)
    return dict(value) if value else {}
