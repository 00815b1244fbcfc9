import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable

import aiofiles

from .logging_utils import get_module_logger


logger = get_module_logger("ConfigManager")


class ConfigManager:
    """Reads and writes ``key = value`` configuration files."""

    def __init__(self):
        self.lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Internal helpers

    @staticmethod
    def _stringify_value(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return str(value).lower()
        return str(value)

    def _parse_config_lines(self, lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                value = value[1:-1]
            elif ' #' in value:
                value = value.split(' #')[0].strip()

            config[key] = value

        return config

    def _merge_lines(self, lines: list[str], updates: Dict[str, Any]) -> list[str]:
        updated_keys = set()

        for i, line in enumerate(lines):
            stripped = line.strip()
            if not stripped or stripped.startswith('#') or '=' not in stripped:
                continue

            key = stripped.split('=')[0].strip()
            if key in updates:
                indent = len(line) - len(line.lstrip())
                lines[i] = ' ' * indent + f"{key} = {self._stringify_value(updates[key])}\n"
                updated_keys.add(key)

        if lines and not lines[-1].endswith('\n'):
            lines[-1] += '\n'

        for key, value in updates.items():
            if key not in updated_keys:
                lines.append(f"{key} = {self._stringify_value(value)}\n")
                logger.debug("Added new config key: %s", key)

        return lines

    # ------------------------------------------------------------------
    # Reading

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Read a config file; a missing or unreadable file yields ``{}``."""
        if not config_path.exists():
            logger.debug("Config file %s not found, using defaults", config_path)
            return {}

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return self._parse_config_lines(f)
        except OSError as e:
            logger.error("Failed to read config %s: %s", config_path, e)
            return {}

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        """Async version for use in async contexts."""
        if not await asyncio.to_thread(config_path.exists):
            logger.debug("Config file %s not found, using defaults", config_path)
            return {}

        try:
            async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
                lines = await f.readlines()
        except OSError as e:
            logger.error("Failed to read config %s: %s", config_path, e)
            return {}
        return self._parse_config_lines(lines)

    # ------------------------------------------------------------------
    # Writing

    def write_config(self, config_path: Path, updates: Dict[str, Any]) -> bool:
        """Merge ``updates`` into the file, creating it when missing."""
        try:
            lines: list[str] = []
            if config_path.exists():
                with open(config_path, 'r', encoding='utf-8') as f:
                    lines = f.readlines()

            lines = self._merge_lines(lines, updates)

            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, 'w', encoding='utf-8') as f:
                f.writelines(lines)
            return True

        except OSError as e:
            logger.error("Failed to write config %s: %s", config_path, e)
            return False

    async def write_config_async(self, config_path: Path, updates: Dict[str, Any]) -> bool:
        """Async version for use in async contexts."""
        async with self.lock:
            try:
                lines: list[str] = []
                if await asyncio.to_thread(config_path.exists):
                    async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
                        lines = await f.readlines()

                lines = self._merge_lines(lines, updates)

                await asyncio.to_thread(config_path.parent.mkdir, parents=True, exist_ok=True)
                async with aiofiles.open(config_path, 'w', encoding='utf-8') as f:
                    await f.writelines(lines)
                return True

            except OSError as e:
                logger.error("Failed to write config %s: %s", config_path, e)
                return False

    # ------------------------------------------------------------------
    # Typed getters

    def get_bool(self, config: Dict[str, str], key: str, default: bool = False) -> bool:
        if key not in config:
            return default

        value = config[key].lower()
        if value in ('true', '1', 'yes', 'on'):
            return True
        if value in ('false', '0', 'no', 'off'):
            return False
        logger.warning("Invalid bool value for %s: %s, using default %s", key, config[key], default)
        return default

    def get_int(self, config: Dict[str, str], key: str, default: int = 0) -> int:
        if key not in config:
            return default

        try:
            return int(config[key])
        except ValueError:
            logger.warning("Invalid int value for %s: %s, using default %d", key, config[key], default)
            return default

    def get_float(self, config: Dict[str, str], key: str, default: float = 0.0) -> float:
        if key not in config:
            return default

        try:
            return float(config[key])
        except ValueError:
            logger.warning("Invalid float value for %s: %s, using default %f", key, config[key], default)
            return default

    def get_str(self, config: Dict[str, str], key: str, default: str = "") -> str:
        return config.get(key, default)


_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _config_manager
