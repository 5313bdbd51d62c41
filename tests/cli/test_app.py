import json

import pytest
from typer.testing import CliRunner

import romulus.cli.app as app_mod
from romulus.logging.log import init_logging
from romulus.state.resources import Domain, Network, Pool, Volume

runner = CliRunner()


@pytest.fixture
def host(monkeypatch, tmp_path, fake_backend):
    """Point the CLI at an in-memory host and keep run logs under tmp_path."""
    backend = fake_backend()
    monkeypatch.setattr(app_mod, "VirshBackend", lambda uri=None: backend)
    monkeypatch.setattr(
        app_mod,
        "init_logging",
        lambda **kw: init_logging(base_dir=tmp_path / "logs", **kw),
    )
    return backend


def test_plan_on_empty_host_lists_creates(host, config_file):
    result = runner.invoke(app_mod.app, ["plan", "-c", str(config_file)])
    assert result.exit_code == 0, result.output
    assert "To create:" in result.output
    assert "[pool] k8s-pool" in result.output
    assert "[domain] k8s-worker-2" in result.output
    assert "Total: 12 change(s)" in result.output
    assert host.mutations() == []


def test_plan_json(host, config_file):
    result = runner.invoke(app_mod.app, ["plan", "-c", str(config_file), "--format", "json"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.stdout)
    assert doc["statistics"]["total"] == 12
    first = doc["actions"][0]
    assert (first["action"], first["kind"], first["name"]) == ("create", "pool", "k8s-pool")
    assert first["reason"] == "Pool does not exist"


def test_plan_bad_format(host, config_file):
    result = runner.invoke(app_mod.app, ["plan", "-c", str(config_file), "--format", "yaml"])
    assert result.exit_code != 0


def test_plan_missing_config_fails(host, tmp_path):
    result = runner.invoke(app_mod.app, ["plan", "-c", str(tmp_path / "nope.yaml"), "--format", "json"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["kind"] == "configuration"


def test_apply_builds_everything_then_converges(host, config_file):
    result = runner.invoke(app_mod.app, ["apply", "-c", str(config_file), "-y"])
    assert result.exit_code == 0, result.output
    assert "Status: success" in result.output
    assert set(host.domains) == {"k8s-master-1", "k8s-worker-1", "k8s-worker-2"}
    assert set(host.payloads) == {"k8s-master-1-init.iso", "k8s-worker-1-init.iso", "k8s-worker-2-init.iso"}

    again = runner.invoke(app_mod.app, ["plan", "-c", str(config_file)])
    assert "Infrastructure is up to date" in again.output


def test_apply_dry_run_touches_nothing(host, config_file):
    result = runner.invoke(app_mod.app, ["apply", "-c", str(config_file), "--dry-run", "--format", "json"])
    assert result.exit_code == 0, result.output
    report = json.loads(result.stdout)
    assert report["status"] == "dry_run"
    assert {o["status"] for o in report["outcomes"]} == {"PLANNED"}
    assert host.mutations() == []


def test_apply_declined_confirmation(host, config_file):
    result = runner.invoke(app_mod.app, ["apply", "-c", str(config_file)], input="n\n")
    assert result.exit_code == 0
    assert "Apply cancelled." in result.output
    assert host.mutations() == []


def test_apply_failure_exits_nonzero(host, config_file):
    host.fail = {("create_network", "k8s-net")}
    result = runner.invoke(app_mod.app, ["apply", "-c", str(config_file), "-y"])
    assert result.exit_code == 1
    assert "Status: failed" in result.output
    assert "k8s-worker-1" not in host.domains


def test_apply_rejects_bad_concurrency(host, config_file):
    result = runner.invoke(app_mod.app, ["apply", "-c", str(config_file), "-y", "--parallel", "--max-concurrency", "0"])
    assert result.exit_code != 0
    assert host.mutations() == []


def test_destroy_leaves_unmanaged_resources(host, config_file):
    host.seed(
        Pool(name="k8s-pool", path="/var/lib/libvirt/images/k8s", active=True),
        Pool(name="default", path="/var/lib/libvirt/images", active=True),
        Network(name="k8s-net", addresses=("10.10.10.0/24",), active=True),
        Volume(name="debian-12-base.qcow2", pool="k8s-pool"),
        Volume(name="other.qcow2", pool="default"),
        Domain(name="k8s-worker-1", network="k8s-net", pool="k8s-pool"),
    )
    result = runner.invoke(app_mod.app, ["destroy", "-c", str(config_file), "-y"])
    assert result.exit_code == 0, result.output
    assert set(host.pools) == {"default"}
    assert set(host.volumes) == {"other.qcow2"}
    assert host.networks == {} and host.domains == {}
    assert host.mutations()[0] == ("delete_domain", "k8s-worker-1")


def test_plan_tolerates_foreign_vm_in_unmanaged_pool(host, config_file):
    host.seed(
        Pool(name="default", path="/var/lib/libvirt/images", active=True),
        Network(name="k8s-net", addresses=("10.10.10.0/24",), active=True),
        Domain(name="desktop", network="k8s-net", pool="default"),
    )
    result = runner.invoke(app_mod.app, ["plan", "-c", str(config_file), "--format", "json"])
    assert result.exit_code == 0, result.output
    destroys = [(a["kind"], a["name"]) for a in json.loads(result.stdout)["actions"] if a["action"] == "destroy"]
    assert ("pool", "default") not in destroys

    result = runner.invoke(app_mod.app, ["destroy", "-c", str(config_file), "-y"])
    assert result.exit_code == 0, result.output
    assert set(host.pools) == {"default"}


def test_destroy_empty_host(host, config_file):
    result = runner.invoke(app_mod.app, ["destroy", "-c", str(config_file), "-y"])
    assert result.exit_code == 0
    assert "No infrastructure to destroy." in result.output


def test_state_export(host, tmp_path):
    host.seed(Pool(name="k8s-pool", path="/p", active=True))
    out = tmp_path / "state.json"
    result = runner.invoke(app_mod.app, ["state", "--output", str(out)])
    assert result.exit_code == 0, result.output
    doc = json.loads(out.read_text())
    assert [p["name"] for p in doc["pools"]] == ["k8s-pool"]
    assert doc["domains"] == []


def test_exists_exit_codes(host):
    host.seed(Network(name="k8s-net"))
    assert runner.invoke(app_mod.app, ["exists", "network", "k8s-net"]).exit_code == 0
    missing = runner.invoke(app_mod.app, ["exists", "domain", "ghost"])
    assert missing.exit_code == 1
    assert "domain ghost: absent" in missing.output


def test_render_cloudinit_writes_documents(config_file, tmp_path):
    out = tmp_path / "cidata"
    result = runner.invoke(app_mod.app, ["render-cloudinit", "worker", "1", "-c", str(config_file), "-o", str(out)])
    assert result.exit_code == 0, result.output
    assert sorted(p.name for p in out.iterdir()) == ["meta-data", "network-config", "user-data"]
    assert "hostname: k8s-worker-1" in (out / "user-data").read_text()
