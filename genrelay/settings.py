from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

try:
    from .errors import ConfigError
    from .schemas import SchemaValidator
except ImportError:
    from genrelay.errors import ConfigError
    from genrelay.schemas import SchemaValidator

REPO_ROOT = Path(__file__).resolve().parents[1]


# Load .env from repo root (dev convenience)
def load_env_file(path: Optional[Path] = None) -> None:
    env_path = Path(path) if path else REPO_ROOT / ".env"
    if not env_path.exists():
        return
    for line in env_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip(); v = v.strip().strip('"').strip("'")
        if k and v and k not in os.environ:
            os.environ[k] = v


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _ids(raw: Optional[str]) -> List[int]:
    out: List[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if part.lstrip("-").isdigit():
            out.append(int(part))
    return out


@dataclass
class Settings:
    telegram_token: Optional[str] = None
    base_url: Optional[str] = None
    port: int = 8080
    log_level: str = "INFO"
    reply_prefix: str = "Belaynish"
    memory_ttl_s: int = 10800
    redis_url: Optional[str] = None
    owner_id: Optional[int] = None
    admin_ids: List[int] = field(default_factory=list)
    poll_interval_ms: int = 3000
    job_deadline_s: int = 600
    notify_min_delta: int = 5
    notify_min_interval_ms: int = 15000
    chain_config: Optional[str] = None
    # raw environment snapshot; provider credentials and model ids are read from here
    env: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.env.get(key)
        return value if value else default

    def is_admin(self, user_id: Optional[int]) -> bool:
        if not user_id:
            return False
        if self.owner_id and user_id == self.owner_id:
            return True
        return user_id in self.admin_ids


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    if environ is None:
        load_env_file()
        environ = os.environ
    env = dict(environ)
    owner = env.get("OWNER_ID", "").strip()
    return Settings(
        telegram_token=env.get("TELEGRAM_TOKEN") or None,
        base_url=env.get("BASE_URL") or None,
        port=_int(env, "PORT", 8080),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        reply_prefix=env.get("REPLY_PREFIX", "Belaynish"),
        memory_ttl_s=_int(env, "MEMORY_TTL_SECONDS", 10800),
        redis_url=env.get("REDIS_URL") or env.get("UPSTASH_REDIS_REST_URL") or None,
        owner_id=int(owner) if owner.lstrip("-").isdigit() else None,
        admin_ids=_ids(env.get("ADMIN_IDS")),
        poll_interval_ms=_int(env, "REPLICATE_POLL_INTERVAL_MS", 3000),
        job_deadline_s=_int(env, "REPLICATE_POLL_TIMEOUT_SEC", 600),
        notify_min_delta=_int(env, "NOTIFY_MIN_DELTA", 5),
        notify_min_interval_ms=_int(env, "NOTIFY_MIN_INTERVAL_MS", 15000),
        chain_config=env.get("CHAIN_CONFIG") or None,
        env=env,
    )


def load_chain_overrides(path: Optional[str]) -> Dict[str, List[Dict[str, Any]]]:
    """Read and validate a chain config file.

    Returns ``{capability: [{"provider": name, "deadline_s": float?}, ...]}``;
    plain string entries are expanded to ``{"provider": name}``.
    """
    if not path:
        return {}
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"chain config not found: {p}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {p}: {e}") from None
    errors = SchemaValidator().validate("chain", data)
    if errors:
        raise ConfigError(f"chain config {p} is invalid", errors)
    out: Dict[str, List[Dict[str, Any]]] = {}
    for cap, entries in data.items():
        out[cap] = [{"provider": e} if isinstance(e, str) else dict(e) for e in entries]
    return out


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
