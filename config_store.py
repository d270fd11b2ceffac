"""
Transient key-value configuration store and the session state built on it.

The store is read once at startup and written on each explicit toggle. Only
one agent writes it, so last writer wins and no locking is done.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from logger import agent_logger
from models import SessionConfig

STORE_KEYS = ("status", "random", "autoJoin", "notify", "email", "useAI", "aiModel", "prevPage")

TOGGLE_FLAGS = {
    "random": "random",
    "autoJoin": "auto_join",
    "notify": "notify",
    "useAI": "use_ai",
}


class ConfigStore:
    """A flat JSON object on disk, read and written as a whole."""

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding='utf-8') or "{}")
        except (OSError, json.JSONDecodeError) as e:
            agent_logger.warning(f"⚠️  Config store unreadable ({e}); starting from defaults")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding='utf-8')

    def get(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        data = self._read()
        if keys is None:
            return data
        return {k: data[k] for k in keys if k in data}

    def set(self, **values: Any) -> None:
        data = self._read()
        data.update(values)
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


class SessionState:
    """
    The single owner of SessionConfig. Handlers read `config` freely but only
    change it through the setters below, which also persist the change.
    """

    def __init__(self, store: ConfigStore):
        self.store = store
        self.config = SessionConfig.model_validate(store.get(STORE_KEYS))
        agent_logger.info(
            f"Session loaded: running={self.config.running}, random={self.config.random}, "
            f"autoJoin={self.config.auto_join}, notify={self.config.notify}, "
            f"useAI={self.config.use_ai}, model={self.config.selected_model}"
        )

    def toggle(self, flag: str) -> bool:
        """Flip one boolean toggle by its store key. Returns the new value."""
        if flag not in TOGGLE_FLAGS:
            raise KeyError(f"Unknown toggle: {flag}")
        field = TOGGLE_FLAGS[flag]
        value = not getattr(self.config, field)
        setattr(self.config, field, value)
        self.store.set(**{flag: value})
        return value

    def set_email(self, email: Optional[str]) -> None:
        self.config.email = email
        self.store.set(email=email or "")

    def set_model(self, model: str) -> None:
        self.config.selected_model = model
        self.store.set(aiModel=model)

    def set_running(self, running: bool) -> None:
        self.config.running = running
        self.store.set(status="started" if running else "stopped")

    def clear_running(self) -> None:
        """Class ended on its own: forget the status instead of recording a stop."""
        self.config.running = False
        self.store.remove("status")

    def set_prev_page(self, page: str) -> None:
        if self.config.prev_page == page:
            return
        self.config.prev_page = page
        self.store.set(prevPage=page)
