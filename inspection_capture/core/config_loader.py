import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .logging_utils import get_module_logger

logger = get_module_logger("ConfigLoader")

_TRUE_WORDS = ('true', 'yes', 'on', '1')
_BOOL_WORDS = _TRUE_WORDS + ('false', 'no', 'off', '0')


class ConfigLoader:
    """Reader for ``key = value`` config files.

    Values are coerced to the type of the matching default when one is
    given, otherwise guessed (bool, int, float, then str).
    """

    @staticmethod
    async def load_async(
        config_path: Path,
        defaults: Optional[Dict[str, Any]] = None,
        strict: bool = False
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(ConfigLoader.load, config_path, defaults, strict)

    @staticmethod
    def load(
        config_path: Path,
        defaults: Optional[Dict[str, Any]] = None,
        strict: bool = False
    ) -> Dict[str, Any]:
        config = defaults.copy() if defaults else {}

        if not config_path.exists():
            logger.debug("Config file not found at %s, using defaults", config_path)
            return config

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                parsed = ConfigLoader.parse_lines(f)
        except OSError as e:
            logger.error("Failed to read config file %s: %s", config_path, e)
            return config

        for key, value in parsed.items():
            if strict and defaults is not None and key not in defaults:
                logger.warning("Unknown config key '%s' ignored in strict mode", key)
                continue
            if defaults and key in defaults:
                config[key] = ConfigLoader._parse_value_with_type(value, defaults[key])
            else:
                config[key] = ConfigLoader._parse_value(value)

        logger.info("Loaded config from %s (%d values)", config_path, len(parsed))
        return config

    @staticmethod
    def parse_lines(lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for line_num, raw_line in enumerate(lines, 1):
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' not in line:
                logger.warning("Invalid config line %d (missing '='): %s", line_num, line)
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if '#' in value:
                value = value.split('#', 1)[0].strip()

            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]

            config[key] = value

        return config

    @staticmethod
    def _parse_value(value: str) -> Any:
        value_lower = value.lower()
        if value_lower in _BOOL_WORDS:
            return value_lower in _TRUE_WORDS

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    @staticmethod
    def _parse_value_with_type(value: str, default: Any) -> Any:
        target_type = type(default)
        if target_type is bool:
            return value.lower() in _TRUE_WORDS

        if target_type is int:
            try:
                return int(value, 0)
            except ValueError:
                logger.warning("Failed to parse '%s' as int, keeping %s", value, default)
                return default

        if target_type is float:
            try:
                return float(value)
            except ValueError:
                logger.warning("Failed to parse '%s' as float, keeping %s", value, default)
                return default

        return value
