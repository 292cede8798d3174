from __future__ import annotations

import json

import pytest

from ebt_fleet.config import NodeRegistry, load_settings, settings_from_dict, split_description
from ebt_fleet.errors import ConfigurationError
from ebt_fleet.models import Node


def test_split_description():
    assert split_description("RT-BE92U (Primary)") == ("RT-BE92U", "Primary")
    assert split_description("Attic") == ("", "Attic")


def test_settings_from_dict(tmp_path):
    data = {
        "routers": [
            {"address": "192.168.1.2", "description": "RT-AX86U (Node1)", "ssh": "ssh -p 2222 admin@192.168.1.2"},
            {"address": "192.168.1.1", "description": "RT-AX88U (Primary)"},
        ],
        "macmap_file": str(tmp_path / "map.tsv"),
        "connect_timeout": 3,
    }
    settings = settings_from_dict(data)
    reg = settings.registry
    assert reg.primary.address == "192.168.1.1"
    assert not reg.degraded
    assert settings.ssh_commands["192.168.1.2"] == ["ssh", "-p", "2222", "admin@192.168.1.2"]
    assert settings.ssh_commands["192.168.1.1"] == ["ssh", "192.168.1.1"]
    assert settings.connect_timeout == 3
    assert [n.address for n in reg.sorted_nodes()] == ["192.168.1.1", "192.168.1.2"]
    assert reg.names_help() == "primary/192.168.1.1, node1/192.168.1.2"


def test_missing_primary_falls_back_to_first(caplog):
    reg = NodeRegistry.from_nodes([Node("10.0.0.2", "Mesh1"), Node("10.0.0.1", "Mesh2")])
    assert reg.degraded
    assert reg.primary.address == "10.0.0.2"
    assert "No router is marked as primary" in caplog.text


def test_duplicate_addresses_rejected():
    with pytest.raises(ConfigurationError):
        NodeRegistry.from_nodes([Node("10.0.0.1", "A"), Node("10.0.0.1", "B")])


def test_resolve_by_label_model_or_address(registry):
    assert registry.resolve("mesh1").address == "10.0.0.2"
    assert registry.resolve("ax88u-pro").address == "10.0.0.3"
    assert registry.resolve("10.0.0.1").label == "Primary"
    assert registry.resolve("garage") is None


def test_load_settings_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"routers": [{"address": "10.1.1.1", "description": "Main (Primary)"}]}), encoding="utf-8")
    settings = load_settings(str(path))
    assert settings.registry.primary.label == "Primary"


def test_load_settings_bad_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(str(path))


def test_primary_flag_accepts_string_forms():
    settings = settings_from_dict(
        {
            "routers": [
                {"address": "10.0.0.1", "description": "RT-AX88U (Primary)", "primary": "false"},
                {"address": "10.0.0.2", "description": "RT-AX86U (Node1)", "primary": "yes"},
            ]
        }
    )
    assert settings.registry.primary.address == "10.0.0.2"
    assert not settings.registry.degraded


def test_primary_flag_rejects_unknown_words():
    with pytest.raises(ConfigurationError):
        settings_from_dict({"routers": [{"address": "10.0.0.1", "primary": "maybe"}]})
