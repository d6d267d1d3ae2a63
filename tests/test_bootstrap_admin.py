import importlib.util
from pathlib import Path

from keyflow.storage.memory import MemoryStore
from keyflow.storage.models import ProviderProfile

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_promotes_existing_user():
    script = _load_script()
    store = MemoryStore()
    user = store.upsert_user(ProviderProfile(provider_id=9, login="octo"))

    result = script.promote_admin(store, "octo")

    assert result["status"] == "promoted"
    assert store.get_user(user.id).role == "admin"
    assert script.promote_admin(store, "octo")["status"] == "already_admin"


def test_dry_run_and_unknown_login():
    script = _load_script()
    store = MemoryStore()
    user = store.upsert_user(ProviderProfile(provider_id=9, login="octo"))

    assert script.promote_admin(store, "octo", dry_run=True)["status"] == "dry_run"
    assert store.get_user(user.id).role == "user"
    assert script.promote_admin(store, "ghost")["status"] == "not_found"
