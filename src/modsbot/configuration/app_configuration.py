from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import fcntl
from typing import Any, Dict, FrozenSet, Mapping, Optional
import yaml

from modsbot.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_PREFIX = "?"
DEFAULT_PRIVILEGED_ROLE_NAMES = ("WG & Teams",)
DEFAULT_MODERATOR_ROLE_NAMES = ("Mod",)


@dataclass(frozen=True)
class RoleSettings:
    """Role ids / names that make up each permission tier, plus the CoC role."""
    privileged_ids: FrozenSet[int] = frozenset()
    privileged_names: FrozenSet[str] = frozenset(DEFAULT_PRIVILEGED_ROLE_NAMES)
    moderator_ids: FrozenSet[int] = frozenset()
    moderator_names: FrozenSet[str] = frozenset(DEFAULT_MODERATOR_ROLE_NAMES)
    talk_role_id: Optional[int] = None


@dataclass(frozen=True)
class GatewaySettings:
    backoff_floor_seconds: float = 1.0
    backoff_ceiling_seconds: float = 60.0
    backoff_reset_after_seconds: float = 120.0


@dataclass(frozen=True)
class RegistrySettings:
    base_url: str = "https://crates.io/api/v1"
    user_agent: str = "modsbot (community moderation bot)"
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class PlaygroundSettings:
    base_url: str = "https://play.rust-lang.org"
    user_agent: str = "modsbot (community moderation bot)"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class FeatureSettings:
    tags: bool = True
    crates: bool = True
    playground: bool = True


def _section(data: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key, {})
    return value if isinstance(value, dict) else {}


def _id_set(values: Any) -> FrozenSet[int]:
    if not isinstance(values, (list, tuple, set)):
        values = [values] if values not in (None, "") else []
    ids = set()
    for value in values:
        try:
            ids.add(int(value))
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] Ignoring non-numeric role id %r", value)
    return frozenset(ids)


def _name_set(values: Any, default: tuple) -> FrozenSet[str]:
    if values is None:
        return frozenset(default)
    if isinstance(values, str):
        values = [values]
    return frozenset(str(v) for v in values if str(v).strip())


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed views over the sections the bot reads. Every accessor falls back to
    a default so a missing or partial file still yields a runnable config.
    """

    def __init__(self, config_path: Path | None = None, data: Mapping[str, Any] | None = None) -> None:
        self.config_path = config_path or CONFIG_PATH
        self._data: Dict[str, Any] = {}
        if data is not None:
            self._data = dict(data)
        else:
            self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found, using defaults.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file and replace the in-memory cache.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """The cached configuration mapping. Callers should not mutate it."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def command_prefix(self) -> str:
        prefix = str(self._data.get("command_prefix") or DEFAULT_PREFIX)
        return prefix

    @property
    def log_level(self) -> str:
        return str(_section(self._data, "logging").get("level", "INFO"))

    @property
    def features(self) -> FeatureSettings:
        section = _section(self._data, "features")
        return FeatureSettings(
            tags=bool(section.get("tags", True)),
            crates=bool(section.get("crates", True)),
            playground=bool(section.get("playground", True)),
        )

    @property
    def roles(self) -> RoleSettings:
        """Role configuration; names and ids are merged when the resolver looks up a guild."""
        section = _section(self._data, "roles")
        talk = section.get("talk_role_id")
        try:
            talk_role_id = int(talk) if talk not in (None, "") else None
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] roles.talk_role_id %r is not numeric", talk)
            talk_role_id = None
        return RoleSettings(
            privileged_ids=_id_set(section.get("privileged_ids", [])),
            privileged_names=_name_set(section.get("privileged_names"), DEFAULT_PRIVILEGED_ROLE_NAMES),
            moderator_ids=_id_set(section.get("moderator_ids", [])),
            moderator_names=_name_set(section.get("moderator_names"), DEFAULT_MODERATOR_ROLE_NAMES),
            talk_role_id=talk_role_id,
        )

    @property
    def handler_timeout(self) -> float:
        return float(_section(self._data, "router").get("handler_timeout_seconds", 15.0))

    @property
    def max_workers(self) -> int:
        return max(1, int(_section(self._data, "dispatcher").get("max_workers", 8)))

    @property
    def gateway(self) -> GatewaySettings:
        section = _section(self._data, "gateway")
        return GatewaySettings(
            backoff_floor_seconds=float(section.get("backoff_floor_seconds", 1.0)),
            backoff_ceiling_seconds=float(section.get("backoff_ceiling_seconds", 60.0)),
            backoff_reset_after_seconds=float(section.get("backoff_reset_after_seconds", 120.0)),
        )

    @property
    def shutdown_grace(self) -> float:
        return float(_section(self._data, "shutdown").get("grace_seconds", 10.0))

    @property
    def registry(self) -> RegistrySettings:
        section = _section(self._data, "registry")
        defaults = RegistrySettings()
        return RegistrySettings(
            base_url=str(section.get("base_url", defaults.base_url)).rstrip("/"),
            user_agent=str(section.get("user_agent", defaults.user_agent)),
            timeout_seconds=float(section.get("timeout_seconds", defaults.timeout_seconds)),
        )

    @property
    def playground(self) -> PlaygroundSettings:
        section = _section(self._data, "playground")
        defaults = PlaygroundSettings()
        return PlaygroundSettings(
            base_url=str(section.get("base_url", defaults.base_url)).rstrip("/"),
            user_agent=str(section.get("user_agent", defaults.user_agent)),
            timeout_seconds=float(section.get("timeout_seconds", defaults.timeout_seconds)),
        )

    @property
    def jobs_interval(self) -> float:
        """Seconds between runs of the unban / history-trim jobs. Default one hour."""
        return float(_section(self._data, "jobs").get("interval_seconds", 3600.0))

    @property
    def command_history_max_age(self) -> float:
        """How long after posting an edited command is still replayed."""
        return float(_section(self._data, "command_history").get("max_age_seconds", 3600.0))

    @property
    def database_path(self) -> Path:
        return Path(_section(self._data, "database").get("path", "./data/app.db")).resolve()


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
