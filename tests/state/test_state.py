import pytest

from romulus.deploy.planner import diff
from romulus.errors import BackendCommandError, DuplicateResourceError, ReferentialIntegrityError
from romulus.state.resources import Domain, Network, Pool, ResourceKind, Volume, changed_fields
from romulus.state.state import State, managed_subset, validate_references


def test_from_config_derives_named_inventory(config):
    s = State.from_config(config)

    assert [n.name for n in s.networks] == ["k8s-net"]
    assert s.networks[0].addresses == ("10.10.10.0/24",)
    assert s.networks[0].domain == "k8s.lab"
    assert [p.name for p in s.pools] == ["k8s-pool"]
    assert s.pools[0].type == "dir"
    assert [d.name for d in s.domains] == ["k8s-master-1", "k8s-worker-1", "k8s-worker-2"]

    vols = s.by_name(ResourceKind.VOLUME)
    assert vols["debian-12-base.qcow2"].source.startswith("https://")
    assert vols["k8s-worker-2-disk"].base_volume == "debian-12-base.qcow2"
    assert vols["k8s-worker-2-disk"].size == "50G"
    assert vols["k8s-master-1-init.iso"].format == "raw"


def test_from_config_addresses_the_served_24(config):
    cfg = config.model_copy(deep=True)
    cfg.network.cidr = "10.20.0.0/16"
    assert State.from_config(cfg).networks[0].addresses == ("10.20.0.0/24",)


def test_from_config_wires_domains(config):
    dom = State.from_config(config).by_name(ResourceKind.DOMAIN)["k8s-worker-2"]
    assert dom.memory == 8192
    assert dom.vcpu == 4
    assert dom.network == "k8s-net"
    assert dom.pool == "k8s-pool"
    assert dom.disk_volume == "k8s-worker-2-disk"
    assert dom.bootstrap_volume == "k8s-worker-2-init.iso"
    assert dom.ip_address == "10.10.10.22"
    assert (dom.role, dom.index) == ("worker", 2)


def test_from_config_is_deterministic(config):
    assert State.from_config(config) == State.from_config(config)


def test_from_config_zero_workers(config):
    cfg = config.model_copy(deep=True)
    cfg.nodes.workers.count = 0
    s = State.from_config(cfg)
    assert [d.name for d in s.domains] == ["k8s-master-1"]


def test_from_config_rejects_name_collision(config):
    cfg = config.model_copy(deep=True)
    cfg.storage.base_image.name = "k8s-master-1-disk"
    with pytest.raises(DuplicateResourceError):
        State.from_config(cfg)


def test_fetch_current_lists_every_kind(fake_backend):
    be = fake_backend().seed(
        Pool(name="p1", path="/p1", active=True),
        Network(name="n1", addresses=("10.0.0.0/24",), active=True),
        Volume(name="v1", pool="p1"),
        Domain(name="d1", network="n1", pool="p1"),
    )
    s = State.fetch_current(be)
    assert s.counts() == {"pool": 1, "network": 1, "volume": 1, "domain": 1}
    assert ("list", "volumes:p1") in be.calls


def test_fetch_current_empty_host_is_success(fake_backend):
    s = State.fetch_current(fake_backend())
    assert s.is_empty()


def test_fetch_current_fails_fast(fake_backend):
    be = fake_backend(fail={("list", "pools")}).seed(Network(name="n1"))
    with pytest.raises(BackendCommandError):
        State.fetch_current(be)
    # nothing after the failing listing is queried
    assert ("list", "domains") not in be.calls


def test_fetch_current_marks_inactive_pool_unlisted(fake_backend):
    be = fake_backend().seed(
        Pool(name="p1", path="/p1", active=False), Pool(name="p2", path="/p2"), Volume(name="v1", pool="p1"),
    )
    s = State.fetch_current(be)
    assert s.volumes == ()
    assert s.unlisted_pools == ("p1",)
    assert ("list", "volumes:p1") not in be.calls
    assert ("list", "volumes:p2") in be.calls


def test_unlisted_pools_survive_subset_union_and_dict():
    current = State(
        pools=(Pool(name="p1", path="/p1", active=False), Pool(name="other", path="/o", active=False)),
        unlisted_pools=("p1", "other"),
    )
    desired = State(pools=(Pool(name="p1", path="/p1"),))
    scoped = managed_subset(current, desired)
    assert scoped.unlisted_pools == ("p1",)
    assert scoped.union(State(unlisted_pools=("p1", "p3"))).unlisted_pools == ("p1", "p3")
    assert scoped.to_dict()["unlisted_pools"] == ["p1"]


def test_validate_references_detects_missing_network():
    s = State(
        pools=(Pool(name="p1", path="/p"),),
        domains=(Domain(name="d1", network="ghost", pool="p1"),),
    )
    with pytest.raises(ReferentialIntegrityError) as ei:
        validate_references(s)
    assert ei.value.resource == "domain d1"
    assert "ghost" in ei.value.missing


def test_validate_references_detects_missing_pool():
    s = State(volumes=(Volume(name="v1", pool="nowhere"),))
    with pytest.raises(ReferentialIntegrityError):
        validate_references(s)


def test_union_prefers_other_on_collision():
    a = State(networks=(Network(name="n", mode="nat"),))
    b = State(networks=(Network(name="n", mode="route"), Network(name="m")))
    u = a.union(b)
    assert {n.name: n.mode for n in u.networks} == {"n": "route", "m": "nat"}


def test_observed_fields_never_count_as_changes():
    have = Pool(name="p", path="/p", uuid="abc", active=True, capacity=10)
    want = Pool(name="p", path="/p")
    assert changed_fields(have, want) == ()


def test_unobserved_current_value_is_skipped():
    have = Network(name="n", domain=None, addresses=("10.0.0.0/24",))
    want = Network(name="n", domain="lab", addresses=("10.0.0.0/24",))
    assert changed_fields(have, want) == ()


def test_changed_fields_reports_differences():
    have = Domain(name="d", memory=2048, vcpu=2)
    want = Domain(name="d", memory=4096, vcpu=2)
    assert changed_fields(have, want) == ("memory",)


def test_managed_subset_keeps_owned_resources(config):
    desired = State.from_config(config)
    current = State(
        networks=(Network(name="default"), Network(name="k8s-net")),
        pools=(Pool(name="default", path="/var/lib/libvirt/images"), Pool(name="k8s-pool", path="/x")),
        volumes=(Volume(name="other.qcow2", pool="default"), Volume(name="k8s-worker-9-disk", pool="k8s-pool")),
        domains=(Domain(name="desktop", network="default", pool="default"),
                 Domain(name="k8s-worker-9", network="k8s-net", pool="k8s-pool")),
    )
    scoped = managed_subset(current, desired)
    assert [n.name for n in scoped.networks] == ["k8s-net"]
    assert [p.name for p in scoped.pools] == ["k8s-pool"]
    assert [v.name for v in scoped.volumes] == ["k8s-worker-9-disk"]
    assert [d.name for d in scoped.domains] == ["k8s-worker-9"]


def test_foreign_domain_on_managed_network_resolves_against_host_inventory():
    current = State(
        networks=(Network(name="k8s"),),
        pools=(Pool(name="k8s-pool", path="/k"), Pool(name="default", path="/var/lib/libvirt/images")),
        domains=(Domain(name="other-vm", network="k8s", pool="default"),),
    )
    desired = State(networks=(Network(name="k8s"),), pools=(Pool(name="k8s-pool", path="/k"),))
    scoped = managed_subset(current, desired)
    assert [p.name for p in scoped.pools] == ["k8s-pool"]

    actions = diff(scoped, desired, inventory=current)
    assert [(a.type.value, a.name) for a in actions] == [("destroy", "other-vm")]

    # the scoped view alone cannot resolve the pool other-vm lives in
    with pytest.raises(ReferentialIntegrityError):
        diff(scoped, desired)


def test_to_dict_is_serializable(config):
    d = State.from_config(config).to_dict()
    assert d["networks"][0]["kind"] == "network"
    assert d["networks"][0]["addresses"] == ["10.10.10.0/24"]
    assert len(d["domains"]) == 3
