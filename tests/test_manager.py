"""Tests for the KeyManager facade."""

import json
import threading
import time

import httpx
import pytest

from conftest import (
    ANTHROPIC_KEY,
    OTHER_ANTHROPIC_KEY,
    UNSPLASH_KEY,
    CountingStore,
    FailingStore,
    legacy_blob,
    record_json,
)
from provider_keys.backends import CookieStore, MemoryStore
from provider_keys.config import Settings
from provider_keys.manager import KeyManager, State, create_key_manager
from provider_keys.migration import MigrationStrategy, Migrator
from provider_keys.models import KeySource, Service, ValidationReason
from provider_keys.notifier import Notifier
from provider_keys.runtime import Runtime
from provider_keys.store import RecordStore
from provider_keys.validation import LiveValidator


def client_manager(durable=None, environ=None, **kwargs) -> KeyManager:
    durable = durable if durable is not None else MemoryStore()
    return KeyManager(Runtime.client(durable, **kwargs), environ=environ or {})


class TestLifecycle:
    def test_starts_uninitialized(self):
        assert client_manager().state is State.UNINITIALIZED

    def test_init_loads_stored_keys(self):
        durable = MemoryStore({"api-keys": record_json(anthropic=ANTHROPIC_KEY)})
        manager = client_manager(durable)

        manager.init()

        assert manager.state is State.READY
        assert manager.get_all() == {Service.ANTHROPIC: ANTHROPIC_KEY}

    def test_init_is_idempotent(self):
        durable = CountingStore({"app-settings": legacy_blob(anthropic=ANTHROPIC_KEY)})
        manager = client_manager(durable)

        manager.init()
        first = manager.get_all()
        manager.init()

        assert manager.get_all() == first == {Service.ANTHROPIC: ANTHROPIC_KEY}
        assert len(durable.writes) == 1

    def test_corrupted_record_is_recovered(self):
        manager = client_manager(MemoryStore({"api-keys": "not json"}))

        manager.init()

        assert manager.state is State.READY
        assert manager.get_all() == {}

    def test_reads_initialize_lazily(self):
        durable = MemoryStore({"api-keys": record_json(unsplash=UNSPLASH_KEY)})
        manager = client_manager(durable)

        assert manager.get(Service.UNSPLASH) == UNSPLASH_KEY
        assert manager.state is State.READY

    def test_server_runtime_stays_uninitialized(self):
        manager = KeyManager(Runtime.server(), environ={"UNSPLASH_ACCESS_KEY": "env"})

        manager.init()

        assert manager.state is State.UNINITIALIZED
        assert manager.get(Service.UNSPLASH) == "env"

    def test_concurrent_init_migrates_once(self):
        calls = []

        def slow_extract():
            calls.append(1)
            time.sleep(0.05)
            return {Service.UNSPLASH: UNSPLASH_KEY}

        durable = MemoryStore()
        runtime = Runtime.client(durable)
        migrator = Migrator([MigrationStrategy("slow", slow_extract)], RecordStore(durable))
        manager = KeyManager(runtime, environ={}, migrator=migrator)

        threads = [threading.Thread(target=manager.init) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(calls) == 1
        assert manager.get_all() == {Service.UNSPLASH: UNSPLASH_KEY}


class TestMigrationOnInit:
    def test_migrates_legacy_keys_when_nothing_stored(self):
        durable = MemoryStore({"app-settings": legacy_blob(openai=ANTHROPIC_KEY)})
        manager = client_manager(durable)

        manager.init()

        assert manager.get_all() == {Service.ANTHROPIC: ANTHROPIC_KEY}
        stored = json.loads(durable.get_item("api-keys"))
        assert stored["anthropic"] == ANTHROPIC_KEY
        assert "openai" not in stored

    def test_durable_legacy_beats_session_backup(self):
        durable = MemoryStore({"app-settings": legacy_blob(anthropic=ANTHROPIC_KEY)})
        session = MemoryStore({"api-keys-backup": legacy_blob(anthropic=OTHER_ANTHROPIC_KEY)})
        manager = client_manager(durable, session=session)

        assert manager.get(Service.ANTHROPIC) == ANTHROPIC_KEY

    def test_cookies_fill_remaining_services(self):
        durable = MemoryStore({"app-settings": legacy_blob(anthropic=ANTHROPIC_KEY)})
        cookies = CookieStore.from_header(f"unsplash_key={UNSPLASH_KEY}")
        manager = client_manager(durable, cookies=cookies)

        assert manager.get_all() == {
            Service.ANTHROPIC: ANTHROPIC_KEY,
            Service.UNSPLASH: UNSPLASH_KEY,
        }

    def test_existing_record_skips_migration(self):
        durable = MemoryStore(
            {
                "api-keys": record_json(),
                "app-settings": legacy_blob(anthropic=ANTHROPIC_KEY),
            }
        )
        manager = client_manager(durable)

        assert manager.get_all() == {}

    def test_cleared_keys_are_not_migrated_again(self):
        durable = MemoryStore({"app-settings": legacy_blob(anthropic=ANTHROPIC_KEY)})
        client_manager(durable).clear()

        assert client_manager(durable).get_all() == {}


class TestResolution:
    def test_stored_key_beats_environment(self):
        durable = MemoryStore({"api-keys": record_json(anthropic=ANTHROPIC_KEY)})
        manager = client_manager(durable, environ={"ANTHROPIC_API_KEY": "env-key"})

        assert manager.get(Service.ANTHROPIC) == ANTHROPIC_KEY

    def test_environment_only_in_server_runtime(self):
        manager = KeyManager(Runtime.server(), environ={"OPENAI_API_KEY": "env-key"})
        assert manager.get("anthropic") == "env-key"

    def test_override(self):
        manager = client_manager()
        resolved = manager.resolve(Service.UNSPLASH, override="explicit")
        assert resolved.value == "explicit"
        assert resolved.source is KeySource.OVERRIDE

    def test_whitespace_only_stored_key_falls_back_to_environment(self):
        durable = MemoryStore({"api-keys": json.dumps({"version": 1, "unsplash": "   "})})
        manager = client_manager(durable, environ={"UNSPLASH_ACCESS_KEY": "envkey"})

        assert manager.get(Service.UNSPLASH) == "envkey"
        assert manager.get_all() == {}

    def test_unknown_service_returns_empty(self):
        assert client_manager().get("openai") == ""

    def test_resolve_unknown_service_raises(self):
        with pytest.raises(ValueError):
            client_manager().resolve("openai")

    def test_missing_key_returns_empty(self):
        assert client_manager().get(Service.UNSPLASH) == ""


class TestMutations:
    def test_set_persists_and_returns_true(self):
        durable = MemoryStore()
        manager = client_manager(durable)

        assert manager.set(Service.ANTHROPIC, f" {ANTHROPIC_KEY} ") is True

        assert manager.get(Service.ANTHROPIC) == ANTHROPIC_KEY
        assert json.loads(durable.get_item("api-keys"))["anthropic"] == ANTHROPIC_KEY
        assert client_manager(durable).get(Service.ANTHROPIC) == ANTHROPIC_KEY

    def test_set_empty_removes(self):
        manager = client_manager()
        manager.set(Service.UNSPLASH, UNSPLASH_KEY)

        manager.set(Service.UNSPLASH, "")

        assert Service.UNSPLASH not in manager.get_all()

    def test_set_rejected_in_server_runtime(self):
        manager = KeyManager(Runtime.server(), environ={})
        assert manager.set(Service.UNSPLASH, UNSPLASH_KEY) is False
        assert manager.get(Service.UNSPLASH) == ""

    def test_set_unknown_service(self):
        assert client_manager().set("openai", ANTHROPIC_KEY) is False

    def test_persistence_failure_keeps_value_in_memory(self):
        manager = client_manager(FailingStore())
        received = []
        manager.subscribe(received.append)

        assert manager.set(Service.UNSPLASH, UNSPLASH_KEY) is False

        assert manager.get(Service.UNSPLASH) == UNSPLASH_KEY
        assert received == [{Service.UNSPLASH: UNSPLASH_KEY}]

    def test_set_all_merges(self):
        manager = client_manager()
        manager.set(Service.ANTHROPIC, ANTHROPIC_KEY)

        assert manager.set_all({"unsplash": UNSPLASH_KEY}) is True

        assert manager.get_all() == {
            Service.ANTHROPIC: ANTHROPIC_KEY,
            Service.UNSPLASH: UNSPLASH_KEY,
        }

    def test_set_all_empty_value_removes(self):
        manager = client_manager()
        manager.set_all({Service.ANTHROPIC: ANTHROPIC_KEY, Service.UNSPLASH: UNSPLASH_KEY})

        manager.set_all({Service.ANTHROPIC: ""})

        assert manager.get_all() == {Service.UNSPLASH: UNSPLASH_KEY}

    def test_remove(self):
        durable = MemoryStore()
        manager = client_manager(durable)
        manager.set(Service.UNSPLASH, UNSPLASH_KEY)

        assert manager.remove(Service.UNSPLASH) is True

        assert manager.get(Service.UNSPLASH) == ""
        assert "unsplash" not in json.loads(durable.get_item("api-keys"))

    def test_clear(self):
        manager = client_manager()
        manager.set_all({Service.ANTHROPIC: ANTHROPIC_KEY, Service.UNSPLASH: UNSPLASH_KEY})

        assert manager.clear() is True

        assert manager.get_all() == {}

    def test_get_all_is_defensive_copy(self):
        manager = client_manager()
        manager.set(Service.UNSPLASH, UNSPLASH_KEY)

        keys = manager.get_all()
        keys[Service.UNSPLASH] = "tampered"
        keys[Service.ANTHROPIC] = "added"

        assert manager.get_all() == {Service.UNSPLASH: UNSPLASH_KEY}


class TestNotifications:
    def test_each_mutation_broadcasts_once(self):
        manager = client_manager()
        received = []
        manager.subscribe(received.append)

        manager.set(Service.ANTHROPIC, ANTHROPIC_KEY)
        manager.set_all({Service.ANTHROPIC: OTHER_ANTHROPIC_KEY, Service.UNSPLASH: UNSPLASH_KEY})
        manager.remove(Service.ANTHROPIC)
        manager.clear()

        assert received == [
            {Service.ANTHROPIC: ANTHROPIC_KEY},
            {Service.ANTHROPIC: OTHER_ANTHROPIC_KEY, Service.UNSPLASH: UNSPLASH_KEY},
            {Service.UNSPLASH: UNSPLASH_KEY},
            {},
        ]

    def test_failing_listener_does_not_reach_caller(self):
        manager = client_manager()
        received = []

        def broken(keys):
            raise RuntimeError("listener bug")

        manager.subscribe(broken)
        manager.subscribe(received.append)

        assert manager.set(Service.UNSPLASH, UNSPLASH_KEY) is True
        assert len(received) == 1

    def test_listener_unsubscribing_itself_during_remove(self):
        manager = client_manager()
        manager.set_all({Service.ANTHROPIC: ANTHROPIC_KEY, Service.UNSPLASH: UNSPLASH_KEY})
        first, second = [], []
        handles = {}

        def self_removing(keys):
            first.append(keys)
            manager.unsubscribe(handles["first"])

        handles["first"] = manager.subscribe(self_removing)
        manager.subscribe(second.append)

        manager.remove("unsplash")
        manager.set(Service.UNSPLASH, UNSPLASH_KEY)

        assert first == [{Service.ANTHROPIC: ANTHROPIC_KEY}]
        assert second == [
            {Service.ANTHROPIC: ANTHROPIC_KEY},
            {Service.ANTHROPIC: ANTHROPIC_KEY, Service.UNSPLASH: UNSPLASH_KEY},
        ]

    def test_concurrent_sets_notify_in_commit_order(self):
        class PausingNotifier(Notifier):
            """Holds the first broadcast until released."""

            def __init__(self):
                super().__init__()
                self.entered = threading.Event()
                self.release = threading.Event()
                self.calls = 0

            def broadcast(self, keys):
                self.calls += 1
                if self.calls == 1:
                    self.entered.set()
                    self.release.wait(2)
                return super().broadcast(keys)

        manager = client_manager()
        manager.init()
        manager.notifier = PausingNotifier()
        seen = []
        manager.subscribe(lambda keys: seen.append(dict(keys)))

        first = threading.Thread(target=manager.set, args=(Service.ANTHROPIC, ANTHROPIC_KEY))
        first.start()
        assert manager.notifier.entered.wait(2)
        second = threading.Thread(
            target=manager.set, args=(Service.ANTHROPIC, OTHER_ANTHROPIC_KEY)
        )
        second.start()
        time.sleep(0.05)
        manager.notifier.release.set()
        first.join()
        second.join()

        assert seen == [
            {Service.ANTHROPIC: ANTHROPIC_KEY},
            {Service.ANTHROPIC: OTHER_ANTHROPIC_KEY},
        ]
        assert seen[-1] == manager.get_all()

    def test_listener_can_read_new_state(self):
        manager = client_manager()
        seen = []
        manager.subscribe(lambda keys: seen.append(manager.get(Service.UNSPLASH)))

        manager.set(Service.UNSPLASH, UNSPLASH_KEY)

        assert seen == [UNSPLASH_KEY]


class TestValidation:
    def test_validate_format(self):
        manager = client_manager()
        assert manager.validate_format(Service.ANTHROPIC, "sk-ant-REDACTED")
        assert not manager.validate_format(Service.ANTHROPIC, "sk-ant-short")
        assert not manager.validate_format(Service.UNSPLASH, None)

    @pytest.mark.asyncio
    async def test_validate_live_uses_resolved_key(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(401)

        manager = KeyManager(
            Runtime.client(MemoryStore()),
            validator=LiveValidator(transport=httpx.MockTransport(handler)),
            environ={},
        )
        manager.set(Service.ANTHROPIC, ANTHROPIC_KEY)

        result = await manager.validate_live(Service.ANTHROPIC)

        assert not result.valid
        assert result.reason is ValidationReason.UNAUTHORIZED
        assert requests[0].headers["x-api-key"] == ANTHROPIC_KEY

    @pytest.mark.asyncio
    async def test_validate_live_unknown_service_raises(self):
        with pytest.raises(ValueError):
            await client_manager().validate_live("openai", ANTHROPIC_KEY)

    @pytest.mark.asyncio
    async def test_validate_live_without_key(self):
        manager = client_manager()
        result = await manager.validate_live(Service.UNSPLASH)
        assert result.reason is ValidationReason.FORMAT_INVALID


class TestCreateKeyManager:
    def test_client_settings(self, tmp_path):
        settings = Settings(_env_file=None, data_dir=tmp_path)

        manager = create_key_manager(settings, environ={})

        assert manager.state is State.READY
        assert manager.set(Service.UNSPLASH, UNSPLASH_KEY)
        assert (tmp_path / "storage.json").exists()
        assert create_key_manager(settings, environ={}).get(Service.UNSPLASH) == UNSPLASH_KEY

    def test_server_settings(self, tmp_path):
        settings = Settings(_env_file=None, data_dir=tmp_path, client=False)

        manager = create_key_manager(settings, environ={"UNSPLASH_ACCESS_KEY": "env"})

        assert manager.state is State.UNINITIALIZED
        assert manager.get(Service.UNSPLASH) == "env"
        assert not (tmp_path / "storage.json").exists()

    def test_master_key_encrypts_storage(self, tmp_path):
        from cryptography.fernet import Fernet

        settings = Settings(
            _env_file=None, data_dir=tmp_path, master_key=Fernet.generate_key().decode()
        )

        create_key_manager(settings, environ={}).set(Service.ANTHROPIC, ANTHROPIC_KEY)

        assert ANTHROPIC_KEY not in (tmp_path / "storage.json").read_text()
        assert create_key_manager(settings, environ={}).get(Service.ANTHROPIC) == ANTHROPIC_KEY
