import json

from zakerbot.local_store import LAST_USER_NAME_KEY, PROFILE_KEY, LocalStore
from zakerbot.profile_store import ProfileRepository
from zakerbot.registration import demo_profile


def test_local_store_round_trip_across_instances(tmp_path):
    path = tmp_path / "store.json"
    LocalStore(path).set_item("sessions", "[]")

    reopened = LocalStore(path)
    assert reopened.get_item("sessions") == "[]"
    assert not path.with_suffix(".tmp").exists()


def test_local_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{broken", encoding="utf-8")

    store = LocalStore(path)
    assert store.keys() == []


def test_local_store_in_memory_never_touches_disk(tmp_path):
    store = LocalStore(None)
    store.set_item("a", "1")
    store.remove_item("a")
    store.remove_item("missing")
    assert store.get_item("a") is None
    assert list(tmp_path.iterdir()) == []


def test_profile_login_and_logout_remember_name():
    store = LocalStore(None)
    store.set_item(LAST_USER_NAME_KEY, "قديم")
    profiles = ProfileRepository(store)

    profiles.login(demo_profile())
    assert profiles.load().name == "مستخدم تجريبي"
    assert profiles.last_user_name() is None

    profiles.logout()
    assert profiles.load() is None
    assert store.get_item(PROFILE_KEY) is None
    assert profiles.last_user_name() == "مستخدم تجريبي"


def test_malformed_profile_is_discarded():
    store = LocalStore(None)
    store.set_item(PROFILE_KEY, json.dumps({"name": "ناقص"}))

    profiles = ProfileRepository(store)
    assert profiles.load() is None
    assert store.get_item(PROFILE_KEY) is None


def test_profile_survives_restart(tmp_path):
    path = tmp_path / "store.json"
    ProfileRepository(LocalStore(path)).login(demo_profile())

    restored = ProfileRepository(LocalStore(path)).load()
    assert restored == demo_profile()
