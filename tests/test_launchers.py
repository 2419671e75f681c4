import json

import pytest

from conftest import UUID, make_manifest
from modsync.launchers import LauncherAdapter, parse_choice, resolve_launcher
from modsync.launchers.adapter import read_instance_cfg
from modsync.launchers.registry import choice_for, detect_launchers
from modsync.models import CustomLauncher, LauncherChoice, Manifest, Settings


@pytest.fixture
def manifest():
    return Manifest.from_dict(make_manifest())


def locate(choice, settings=None):
    return resolve_launcher(choice, settings or Settings())


def test_parse_choice_variants():
    settings = Settings(custom_launchers=[CustomLauncher(name="PolyMC", path="/opt/polymc")])

    assert parse_choice("prism") == LauncherChoice(family="prism", name="prism")
    assert parse_choice("Vanilla").family == "vanilla"
    assert parse_choice("multimc:/games/mmc") == LauncherChoice(family="multimc", name="multimc", path="/games/mmc")
    assert parse_choice("PolyMC", settings).path == "/opt/polymc"
    with pytest.raises(ValueError):
        parse_choice("C:\\Games\\MultiMC")


def test_custom_launcher_is_detected_from_settings(mmc_root):
    settings = Settings(custom_launchers=[CustomLauncher(name="mine", path=str(mmc_root))])
    names = [handle.name for handle in detect_launchers(settings)]
    assert names[0] == "mine"


def test_missing_launcher_root_resolves_to_none(tmp_path):
    choice = LauncherChoice(family="prism", name="prism", path=str(tmp_path / "absent"))
    assert locate(choice) is None


def test_mmc_instance_is_created_then_reused(mmc_root, manifest):
    handle = locate(LauncherChoice(family="multimc", name="multimc", path=str(mmc_root)))
    adapter = LauncherAdapter(handle.spec)

    created = adapter.ensure_instance(handle, manifest)
    assert created.path == mmc_root / "instances" / UUID
    assert adapter.instance_root(created) == created.path / ".minecraft"
    assert read_instance_cfg(created.path / "instance.cfg")["name"] == "Example Pack"

    again = adapter.ensure_instance(handle, manifest)
    assert again == created
    assert [i.id for i in adapter.list_instances(handle)] == [UUID]
    assert choice_for(handle).path == str(mmc_root)


def test_existing_instance_is_matched_by_name(mmc_root, manifest):
    existing = mmc_root / "instances" / "my-pack"
    (existing / ".minecraft").mkdir(parents=True)
    (existing / "instance.cfg").write_text("InstanceType=OneSix\nname=Example Pack\n")
    handle = locate(LauncherChoice(family="multimc", name="multimc", path=str(mmc_root)))

    instance = LauncherAdapter(handle.spec).ensure_instance(handle, manifest)

    assert instance.path == existing


def test_mmc_profile_keeps_unmanaged_components(mmc_root, manifest):
    handle = locate(LauncherChoice(family="prism", name="prism", path=str(mmc_root)))
    adapter = LauncherAdapter(handle.spec)
    instance = adapter.ensure_instance(handle, manifest)
    (instance.path / "mmc-pack.json").write_text(
        json.dumps(
            {
                "components": [
                    {"uid": "net.minecraft", "version": "1.19.2"},
                    {"uid": "org.lwjgl3", "version": "3.3.1"},
                ],
                "formatVersion": 1,
            }
        )
    )

    adapter.write_profile(instance, manifest.loader)

    components = json.loads((instance.path / "mmc-pack.json").read_text())["components"]
    uids = [c["uid"] for c in components]
    assert uids == ["net.minecraft", "net.fabricmc.intermediary", "net.fabricmc.fabric-loader", "org.lwjgl3"]
    assert components[0]["version"] == "1.20.1"


def test_vanilla_profile_merge_preserves_other_profiles(vanilla_root, manifest):
    (vanilla_root / "launcher_profiles.json").write_text(
        json.dumps({"profiles": {"other": {"name": "Other"}}, "settings": {"locale": "en"}, "version": 3})
    )
    handle = locate(LauncherChoice(family="vanilla", name="vanilla", path=str(vanilla_root)))
    adapter = LauncherAdapter(handle.spec)
    instance = adapter.ensure_instance(handle, manifest)
    assert instance.synthetic
    assert not instance.loader_in_metadata

    adapter.write_profile(instance, manifest.loader)
    adapter.write_profile(instance, manifest.loader)

    data = json.loads((vanilla_root / "launcher_profiles.json").read_text())
    assert data["profiles"]["other"] == {"name": "Other"}
    assert data["settings"] == {"locale": "en"}
    profile = data["profiles"][UUID]
    assert profile["type"] == "custom"
    assert profile["icon"] == "Furnace"
    assert profile["lastVersionId"] == "fabric-loader-0.15.11-1.20.1"
    assert profile["gameDir"] == str(vanilla_root / ".modsync" / UUID)
    assert instance.game_dir.is_dir()


def test_mmc_icon_is_written_and_keyed_by_instance(mmc_root, manifest):
    handle = locate(LauncherChoice(family="multimc", name="multimc", path=str(mmc_root)))
    adapter = LauncherAdapter(handle.spec)
    instance = adapter.ensure_instance(handle, manifest)
    assert not adapter.has_icon(instance)

    adapter.write_profile(instance, manifest.loader, icon=b"png-bytes")

    assert (mmc_root / "icons" / f"{UUID}.png").read_bytes() == b"png-bytes"
    assert read_instance_cfg(instance.path / "instance.cfg")["iconKey"] == UUID
    assert adapter.has_icon(instance)


def test_vanilla_icon_keeps_previous_value_without_new_icon(vanilla_root, manifest):
    handle = locate(LauncherChoice(family="vanilla", name="vanilla", path=str(vanilla_root)))
    adapter = LauncherAdapter(handle.spec)
    instance = adapter.ensure_instance(handle, manifest)
    assert not adapter.has_icon(instance)

    adapter.write_profile(instance, manifest.loader, icon=b"png-bytes")
    adapter.write_profile(instance, manifest.loader)

    profile = json.loads((vanilla_root / "launcher_profiles.json").read_text())["profiles"][UUID]
    assert profile["icon"] == "data:image/png;base64,cG5nLWJ5dGVz"
    assert adapter.has_icon(instance)
