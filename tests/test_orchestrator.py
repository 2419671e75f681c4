import asyncio
import base64
import json

import pytest

from conftest import (
    BRANCH,
    M1_URL,
    M2_URL,
    SOURCE,
    UUID,
    make_client,
    make_manifest,
    sha1_of,
)
from modsync.events import EventBus, EventType
from modsync.exceptions import (
    ConfigPersistenceError,
    ManifestValidationError,
    RunInProgressError,
    UnsupportedManifestVersionError,
)
from modsync.models import ItemStatus, LauncherChoice, RemovalPolicy, RunState, Settings
from modsync.orchestrator import InstallOrchestrator
from modsync.download.items import FABRIC_META
from modsync.services.api_client import manifest_url


def install(settings, store, client, choice, toggles=(), bus=None):
    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client, bus=bus)
        report = await orchestrator.run(SOURCE, BRANCH, choice, toggles)
        await orchestrator.close()
        return report

    return asyncio.run(scenario())


def test_fresh_install_installs_default_features_only(settings, store, mmc_choice, game_dir):
    client = make_client()

    report = install(settings, store, client, mmc_choice)

    assert report.state is RunState.DONE
    assert report.outcome("mod:m1").status is ItemStatus.INSTALLED
    assert report.outcome("mod:m2").status is ItemStatus.SKIPPED_FEATURE
    assert report.outcome("loader").status is ItemStatus.INSTALLED
    assert client.downloads() == [M1_URL]
    assert (game_dir / "mods" / "m1-1.0.jar").read_bytes() == b"m1 jar contents"
    assert not (game_dir / "mods" / "m2-1.0.jar").exists()

    config = store.load()
    record = config.record_for(SOURCE)
    assert record.installed_version == "1.0.0"
    assert record.enabled_features == {"A"}
    assert record.branch == BRANCH
    assert config.first_launch is False
    assert config.launcher.family == "multimc"


def test_install_writes_mmc_pack_with_loader(settings, store, mmc_choice, game_dir):
    install(settings, store, make_client(), mmc_choice)

    pack = json.loads((game_dir.parent / "mmc-pack.json").read_text())
    uids = {c["uid"]: c["version"] for c in pack["components"]}
    assert uids["net.minecraft"] == "1.20.1"
    assert uids["net.fabricmc.fabric-loader"] == "0.15.11"
    assert "net.fabricmc.intermediary" in uids
    assert "name=Example Pack" in (game_dir.parent / "instance.cfg").read_text()


def test_enabling_feature_installs_without_refetching(settings, store, mmc_choice):
    client = make_client()
    install(settings, store, client, mmc_choice)
    client.requests.clear()

    report = install(settings, store, client, mmc_choice, toggles=[("B", True)])

    assert client.downloads() == [M2_URL]
    assert report.outcome("mod:m1").status is ItemStatus.PRESENT
    assert report.outcome("mod:m2").status is ItemStatus.INSTALLED
    assert store.load().record_for(SOURCE).enabled_features == {"A", "B"}


def test_rerun_unchanged_performs_no_item_fetches(settings, store, mmc_choice):
    client = make_client()
    install(settings, store, client, mmc_choice, toggles=[("B", True)])
    client.requests.clear()

    report = install(settings, store, client, mmc_choice)

    assert client.item_fetches() == []
    assert {o.status for o in report.outcomes} == {ItemStatus.PRESENT}


def test_unsupported_manifest_version_aborts_before_download(settings, store, mmc_choice):
    client = make_client(make_manifest(manifest_version="0.2.0"))
    bus = EventBus()
    errors = []
    bus.subscribe(EventType.ERROR, errors.append)

    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client, bus=bus)
        with pytest.raises(UnsupportedManifestVersionError):
            await orchestrator.run(SOURCE, BRANCH, mmc_choice)
        return orchestrator

    orchestrator = asyncio.run(scenario())

    assert orchestrator.state is RunState.ERROR
    assert client.downloads() == []
    assert errors[0].data["code"] == "E110"
    assert not store.path.exists()


def test_dangling_feature_reference_is_rejected_before_download(settings, store, mmc_choice):
    manifest = make_manifest()
    manifest["mods"][0]["feature"] = "missing"
    client = make_client(manifest)

    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client)
        with pytest.raises(ManifestValidationError):
            await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)

    asyncio.run(scenario())
    assert client.item_fetches() == []


def test_partial_failure_reports_failed_item_and_updates_config(settings, store, mmc_choice, game_dir):
    client = make_client()
    client.failures[M2_URL] = 2

    report = install(settings, store, client, mmc_choice, toggles=[("B", True)])

    assert report.state is RunState.DONE
    assert report.partial
    assert report.outcome("mod:m1").status is ItemStatus.INSTALLED
    failed = report.outcome("mod:m2")
    assert failed.status is ItemStatus.FAILED
    assert failed.error["code"] == "E301"
    assert client.downloads().count(M2_URL) == 2
    assert (game_dir / "mods" / "m1-1.0.jar").exists()

    record = store.load().record_for(SOURCE)
    assert record.installed_version == "1.0.0"
    assert record.enabled_features == {"A", "B"}


def test_item_timeout_is_retried_then_failed(settings, store, mmc_choice):
    settings.item_timeout = 0.3
    client = make_client()
    client.blocked.add(M1_URL)

    report = install(settings, store, client, mmc_choice)

    assert report.state is RunState.DONE
    outcome = report.outcome("mod:m1")
    assert outcome.status is ItemStatus.FAILED
    assert outcome.error["code"] == "E304"
    assert client.downloads().count(M1_URL) == settings.max_retries + 1


def test_corrupt_download_is_retried_then_failed(settings, store, mmc_choice, game_dir):
    client = make_client()
    client.serve(M1_URL, b"tampered")

    report = install(settings, store, client, mmc_choice)

    outcome = report.outcome("mod:m1")
    assert outcome.status is ItemStatus.FAILED
    assert outcome.error["code"] == "E302"
    assert client.downloads().count(M1_URL) == 2
    assert list((game_dir / "mods").glob("*")) == []


def test_cancel_mid_download_leaves_config_untouched(settings, store, mmc_choice, game_dir):
    client = make_client()
    install(settings, store, client, mmc_choice)
    before = store.path.read_bytes()

    client.blocked.add(M2_URL)
    bus = EventBus()
    cancelled = []
    bus.subscribe(EventType.CANCELLED, cancelled.append)

    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client, bus=bus)
        await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)
        orchestrator.set_feature("B", True)
        apply = asyncio.ensure_future(orchestrator.confirm_apply())
        await client.download_started.wait()
        assert orchestrator.cancel_current_run()
        report = await apply
        return orchestrator, report

    orchestrator, report = asyncio.run(scenario())

    assert report.state is RunState.CANCELLED
    assert orchestrator.state is RunState.CANCELLED
    assert store.path.read_bytes() == before
    assert not (game_dir / "mods" / "m2-1.0.jar").exists()
    assert list((game_dir / "mods").glob("*.part")) == []
    assert (game_dir / "mods" / "m1-1.0.jar").exists()
    assert len(cancelled) == 1


def test_second_run_for_same_source_is_rejected(settings, store, mmc_choice):
    client = make_client()
    client.blocked.add(M1_URL)

    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client)
        await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)
        apply = asyncio.ensure_future(orchestrator.confirm_apply())
        await client.download_started.wait()
        with pytest.raises(RunInProgressError):
            await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)
        with pytest.raises(RunInProgressError):
            await orchestrator.confirm_apply()
        orchestrator.cancel_current_run()
        return await apply

    report = asyncio.run(scenario())
    assert report.state is RunState.CANCELLED


def test_no_launcher_found_waits_for_selection(settings, store, mmc_choice, tmp_path):
    client = make_client()
    missing = LauncherChoice(family="multimc", name="multimc", path=str(tmp_path / "nowhere"))
    bus = EventBus()
    notices = []
    bus.subscribe(EventType.NO_LAUNCHER, notices.append)

    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client, bus=bus)
        first = await orchestrator.run(SOURCE, BRANCH, missing)
        assert orchestrator.state is RunState.AWAITING_LAUNCHER
        assert client.downloads() == []
        assert not store.path.exists()

        orchestrator.select_launcher(mmc_choice)
        second = await orchestrator.confirm_apply()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.state is RunState.AWAITING_LAUNCHER
    assert notices[0].data["code"] == "E401"
    assert second.state is RunState.DONE
    assert client.downloads() == [M1_URL]


def test_disabling_feature_sweeps_installed_files(settings, store, mmc_choice, game_dir):
    client = make_client()
    install(settings, store, client, mmc_choice, toggles=[("B", True)])
    untracked = game_dir / "mods" / "user-added.jar"
    untracked.write_bytes(b"mine")

    report = install(settings, store, client, mmc_choice, toggles=[("B", False)])

    assert report.outcome("mod:m2").status is ItemStatus.REMOVED
    assert not (game_dir / "mods" / "m2-1.0.jar").exists()
    assert (game_dir / "mods" / "m1-1.0.jar").exists()
    assert untracked.exists()
    ledger = json.loads((game_dir / ".modsync" / "installed.json").read_text())
    assert "mod:m2" not in ledger["items"]


def test_keep_policy_leaves_disabled_files(settings, store, mmc_choice, game_dir):
    client = make_client()
    install(settings, store, client, mmc_choice, toggles=[("B", True)])
    settings.removal_policy = RemovalPolicy.KEEP

    report = install(settings, store, client, mmc_choice, toggles=[("B", False)])

    assert report.outcome("mod:m2").status is ItemStatus.SKIPPED_FEATURE
    assert (game_dir / "mods" / "m2-1.0.jar").exists()


def test_keep_policy_reports_item_dropped_from_manifest(settings, store, mmc_choice, game_dir):
    client = make_client()
    install(settings, store, client, mmc_choice)
    settings.removal_policy = RemovalPolicy.KEEP
    manifest = make_manifest(modpack_version="1.1.0")
    manifest["mods"] = manifest["mods"][1:]
    client.manifests[(SOURCE, BRANCH)] = manifest

    report = install(settings, store, client, mmc_choice)

    assert report.outcome("mod:m1").status is ItemStatus.SKIPPED_FEATURE
    assert (game_dir / "mods" / "m1-1.0.jar").exists()


def test_item_dropped_from_manifest_is_swept(settings, store, mmc_choice, game_dir):
    client = make_client()
    install(settings, store, client, mmc_choice)
    manifest = make_manifest(modpack_version="1.1.0")
    manifest["mods"] = manifest["mods"][1:]
    client.manifests[(SOURCE, BRANCH)] = manifest

    report = install(settings, store, client, mmc_choice)

    assert report.outcome("mod:m1").status is ItemStatus.REMOVED
    assert not (game_dir / "mods" / "m1-1.0.jar").exists()


def test_update_replaces_old_version_file(settings, store, mmc_choice, game_dir):
    client = make_client()
    install(settings, store, client, mmc_choice)

    new_url = "https://cdn.example.com/files/m1-1.1.jar"
    client.serve(new_url, b"m1 v1.1")
    manifest = make_manifest(modpack_version="1.1.0")
    manifest["mods"][0].update(location=new_url, version="1.1", sha1=sha1_of(b"m1 v1.1"))
    client.manifests[(SOURCE, BRANCH)] = manifest

    async def check_profile():
        orchestrator = InstallOrchestrator(settings, store, client=client)
        profile = await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)
        assert profile.installed and profile.update_available and profile.needs_apply
        return await orchestrator.confirm_apply()

    report = asyncio.run(check_profile())

    assert report.outcome("mod:m1").status is ItemStatus.INSTALLED
    assert not (game_dir / "mods" / "m1-1.0.jar").exists()
    assert (game_dir / "mods" / "m1-1.1.jar").read_bytes() == b"m1 v1.1"
    assert store.load().record_for(SOURCE).installed_version == "1.1.0"


def test_profile_tracks_divergence_from_installed_features(settings, store, mmc_choice):
    client = make_client()

    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client)
        fresh = await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)
        assert not fresh.installed and fresh.needs_apply
        assert fresh.enabled_features == {"A"}
        await orchestrator.confirm_apply()

        again = await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)
        assert again.installed and not again.needs_apply

        on = orchestrator.set_feature("B", True)
        assert on.modified and on.modify_count == 1 and on.needs_apply
        off = orchestrator.set_feature("B", False)
        assert not off.modified and off.modify_count == 0
        assert orchestrator.profile == off

    asyncio.run(scenario())


def test_state_changes_follow_run_order(settings, store, mmc_choice):
    bus = EventBus()
    states = []
    bus.subscribe(EventType.STATE_CHANGED, lambda event: states.append(event.data["state"]))

    install(settings, store, make_client(), mmc_choice, bus=bus)

    assert states == [
        "manifest_fetching",
        "version_checking",
        "feature_resolving",
        "awaiting_confirmation",
        "launcher_resolving",
        "downloading",
        "profile_writing",
        "done",
    ]


def test_config_persistence_failure_degrades_to_warning(settings, store, mmc_choice, monkeypatch):
    async def broken_save(config, retries=2, delay=0.5):
        raise ConfigPersistenceError("disk full")

    monkeypatch.setattr(store, "save", broken_save)
    client = make_client()

    async def scenario():
        orchestrator = InstallOrchestrator(settings, store, client=client)
        report = await orchestrator.run(SOURCE, BRANCH, mmc_choice)
        assert orchestrator.config.record_for(SOURCE) is None
        again = await orchestrator.start_install(SOURCE, BRANCH, mmc_choice)
        assert not again.installed and again.needs_apply
        return report

    report = asyncio.run(scenario())

    assert report.state is RunState.DONE
    assert any("E602" in w for w in report.warnings)



def test_vanilla_install_writes_loader_profile(settings, store, vanilla_root):
    client = make_client()
    version_id = "fabric-loader-0.15.11-1.20.1"
    profile_url = f"{FABRIC_META}/1.20.1/0.15.11/profile/json"
    client.serve(profile_url, json.dumps({"id": version_id}).encode())
    choice = LauncherChoice(family="vanilla", name="vanilla", path=str(vanilla_root))

    report = install(settings, store, client, choice)

    assert report.outcome("loader").status is ItemStatus.INSTALLED
    version_dir = vanilla_root / "versions" / version_id
    assert (version_dir / f"{version_id}.json").exists()
    assert (version_dir / f"{version_id}.jar").exists()

    game_dir = vanilla_root / ".modsync" / UUID
    assert (game_dir / "mods" / "m1-1.0.jar").exists()
    profiles = json.loads((vanilla_root / "launcher_profiles.json").read_text())["profiles"]
    assert profiles[UUID]["lastVersionId"] == version_id
    assert profiles[UUID]["gameDir"] == str(game_dir)


ICON_URL = manifest_url(Settings().raw_root, SOURCE, BRANCH, "icon.png")
ICON_DATA = b"\x89PNG\r\n\x1a\npack icon"


def test_mmc_install_writes_pack_icon(settings, store, mmc_root, mmc_choice):
    client = make_client(make_manifest(icon=True))
    client.serve(ICON_URL, ICON_DATA)

    install(settings, store, client, mmc_choice)

    assert (mmc_root / "icons" / f"{UUID}.png").read_bytes() == ICON_DATA
    cfg = (mmc_root / "instances" / UUID / "instance.cfg").read_text()
    assert f"iconKey={UUID}" in cfg.splitlines()

    client.requests.clear()
    install(settings, store, client, mmc_choice)
    assert client.item_fetches() == []


def test_vanilla_install_embeds_pack_icon(settings, store, vanilla_root):
    client = make_client(make_manifest(icon=True))
    client.serve(ICON_URL, ICON_DATA)
    client.serve(f"{FABRIC_META}/1.20.1/0.15.11/profile/json", b'{"id": "fabric-loader-0.15.11-1.20.1"}')
    choice = LauncherChoice(family="vanilla", name="vanilla", path=str(vanilla_root))

    install(settings, store, client, choice)

    profiles = json.loads((vanilla_root / "launcher_profiles.json").read_text())["profiles"]
    expected = "data:image/png;base64," + base64.b64encode(ICON_DATA).decode("ascii")
    assert profiles[UUID]["icon"] == expected


def test_missing_pack_icon_is_a_warning(settings, store, mmc_root, mmc_choice):
    client = make_client(make_manifest(icon=True))

    report = install(settings, store, client, mmc_choice)

    assert report.state is RunState.DONE
    assert any("E301" in w for w in report.warnings)
    assert not (mmc_root / "icons" / f"{UUID}.png").exists()
    cfg = (mmc_root / "instances" / UUID / "instance.cfg").read_text()
    assert "iconKey=default" in cfg.splitlines()
