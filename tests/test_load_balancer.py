"""Unit tests for load balancer reconciliation."""

import pytest

from cloudprovider.hcloud.load_balancer import (
    MAX_NAME_LENGTH,
    LoadBalancerReconciler,
    ingress_for,
    load_balancer_name,
)
from config import LoadBalancerConfig
from conftest import make_load_balancer, make_node, make_server
from errors import (
    ActionFailedError,
    MalformedIdentifierError,
    NotFoundError,
    TransportError,
)
from events import EventBus, EventType
from models import LoadBalancerIngress, Node, Service, ServicePort

CLUSTER = "prod"


@pytest.fixture
def reconciler(fake_client, resolver, waiter):
    return LoadBalancerReconciler(fake_client, resolver, waiter)


@pytest.fixture
def pruning_reconciler(fake_client, resolver, waiter):
    return LoadBalancerReconciler(
        fake_client, resolver, waiter, config=LoadBalancerConfig(prune=True)
    )


def seed(fake_client, service, services=None, targets=None):
    """Store an existing load balancer for ``service``."""
    name = load_balancer_name(CLUSTER, service.namespace, service.name)
    load_balancer = make_load_balancer(1, name, services=services, targets=targets)
    fake_client.load_balancers[1] = load_balancer
    return load_balancer


# ==================== Naming ====================


class TestLoadBalancerName:
    """Tests for the deterministic load balancer name."""

    def test_stable_across_calls(self):
        assert load_balancer_name("prod", "default", "web") == load_balancer_name(
            "prod", "default", "web"
        )

    def test_readable_prefix(self):
        name = load_balancer_name("prod", "default", "web")
        assert name.startswith("prod-default-web-")

    def test_namespace_is_part_of_identity(self):
        assert load_balancer_name("prod", "a", "web") != load_balancer_name(
            "prod", "b", "web"
        )

    def test_ambiguous_concatenations_do_not_collide(self):
        """'a-b'/'c' and 'a'/'b-c' produce the same readable part."""
        first = load_balancer_name("prod", "a-b", "c")
        second = load_balancer_name("prod", "a", "b-c")
        assert first != second

    def test_cluster_is_part_of_identity(self):
        assert load_balancer_name("prod", "default", "web") != load_balancer_name(
            "staging", "default", "web"
        )

    def test_long_names_are_truncated(self):
        name = load_balancer_name("c" * 40, "n" * 63, "s" * 63)
        assert len(name) <= MAX_NAME_LENGTH

    def test_invalid_characters_are_replaced(self):
        name = load_balancer_name("My_Cluster", "default", "web")
        assert name.startswith("my-cluster-default-web-")

    def test_reconciler_uses_service_identity(self, reconciler, web_service):
        assert reconciler.get_load_balancer_name(CLUSTER, web_service) == (
            load_balancer_name(CLUSTER, "default", "web")
        )


# ==================== Ingress ====================


class TestIngress:
    """Tests for ingress status computation."""

    def test_both_families_with_hostname(self):
        load_balancer = make_load_balancer(1, "lb")
        assert ingress_for(load_balancer) == [
            LoadBalancerIngress(ip="198.51.100.10", hostname="lb.example.com"),
            LoadBalancerIngress(ip="2001:db8:2::1", hostname=None),
        ]

    def test_unspecified_addresses_are_skipped(self):
        load_balancer = make_load_balancer(1, "lb", ipv4="0.0.0.0", ipv6="::")
        assert ingress_for(load_balancer) == []

    def test_missing_addresses_are_skipped(self):
        load_balancer = make_load_balancer(1, "lb", ipv4=None, ipv6="2001:db8::5")
        assert ingress_for(load_balancer) == [
            LoadBalancerIngress(ip="2001:db8::5", hostname=None)
        ]


# ==================== GetLoadBalancer ====================


@pytest.mark.asyncio
class TestGetLoadBalancer:
    """Tests for the status lookup."""

    async def test_absent_is_not_an_error(self, reconciler, web_service):
        ingress, exists = await reconciler.get_load_balancer(CLUSTER, web_service)
        assert exists is False
        assert ingress == []

    async def test_existing(self, reconciler, fake_client, web_service):
        seed(fake_client, web_service)
        ingress, exists = await reconciler.get_load_balancer(CLUSTER, web_service)
        assert exists is True
        assert ingress[0].ip == "198.51.100.10"

    async def test_transport_failure_propagates(self, reconciler, fake_client, web_service):
        async def broken(name):
            raise TransportError("connection refused")

        fake_client.get_load_balancer_by_name = broken
        with pytest.raises(LookupError):
            await reconciler.get_load_balancer(CLUSTER, web_service)


# ==================== EnsureLoadBalancer ====================


@pytest.mark.asyncio
class TestEnsureLoadBalancer:
    """Tests for full convergence."""

    async def test_creates_missing_load_balancer(
        self, reconciler, fake_client, web_service
    ):
        fake_client.servers = [make_server(5, "node-a")]
        nodes = [make_node("node-a", server_id=5)]

        ingress = await reconciler.ensure_load_balancer(CLUSTER, web_service, nodes)

        name = load_balancer_name(CLUSTER, "default", "web")
        assert fake_client.calls == [
            ("create_load_balancer", name, "lb11", "fsn1"),
            ("add_service", 80, 30080),
            ("add_target", 5),
        ]
        # Addresses come from the re-read after creation, not the creation answer
        assert [i.ip for i in ingress] == ["198.51.100.10", "2001:db8:2::1"]

    async def test_resync_completes_partially_converged_load_balancer(
        self, reconciler, fake_client, web_service
    ):
        nodes = [make_node("node-a", server_id=5)]
        fake_client.failing_commands = {"add_service"}

        with pytest.raises(ActionFailedError) as exc_info:
            await reconciler.ensure_load_balancer(CLUSTER, web_service, nodes)

        assert "unable to add listener" in str(exc_info.value)
        (created,) = fake_client.load_balancers.values()
        assert created.services == ()
        assert created.targets == ()

        fake_client.failing_commands = set()
        fake_client.calls = []
        ingress = await reconciler.ensure_load_balancer(CLUSTER, web_service, nodes)

        assert fake_client.calls == [("add_service", 80, 30080), ("add_target", 5)]
        assert len(fake_client.load_balancers) == 1
        converged = fake_client.load_balancers[created.id]
        assert converged.get_service(80).destination_port == 30080
        assert converged.has_server_target(5)
        assert [i.ip for i in ingress] == ["198.51.100.10", "2001:db8:2::1"]

    async def test_uses_configured_type_and_location(
        self, fake_client, resolver, waiter, web_service
    ):
        reconciler = LoadBalancerReconciler(
            fake_client,
            resolver,
            waiter,
            config=LoadBalancerConfig(load_balancer_type="lb21", location="nbg1"),
        )
        await reconciler.ensure_load_balancer(CLUSTER, web_service, [])
        assert fake_client.calls[0][2:] == ("lb21", "nbg1")

    async def test_second_call_is_idempotent(self, reconciler, fake_client):
        fake_client.servers = [make_server(5, "node-a"), make_server(7, "node-b")]
        service = Service(
            name="web",
            ports=[ServicePort(80, 30080), ServicePort(443, 30443)],
        )
        nodes = [make_node("node-a", server_id=5), make_node("node-b")]

        first = await reconciler.ensure_load_balancer(CLUSTER, service, nodes)
        calls_after_first = len(fake_client.calls)
        second = await reconciler.ensure_load_balancer(CLUSTER, service, nodes)

        assert len(fake_client.calls) == calls_after_first
        assert first == second

    async def test_listener_update_in_place_and_add(self, reconciler, fake_client):
        service = Service(
            name="web",
            ports=[ServicePort(80, 30081), ServicePort(443, 30443)],
        )
        seed(fake_client, service, services=[(80, 30080)])

        await reconciler.ensure_load_balancer(CLUSTER, service, [])

        assert fake_client.calls == [
            ("update_service", 80, 30081),
            ("add_service", 443, 30443),
        ]
        stored = fake_client.load_balancers[1]
        assert {(s.listen_port, s.destination_port) for s in stored.services} == {
            (80, 30081),
            (443, 30443),
        }

    async def test_matching_listener_is_left_alone(
        self, reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080)])
        await reconciler.ensure_load_balancer(CLUSTER, web_service, [])
        assert fake_client.calls == []

    async def test_stale_listener_is_kept(self, reconciler, fake_client, web_service):
        seed(fake_client, web_service, services=[(80, 30080), (8080, 31000)])
        await reconciler.ensure_load_balancer(CLUSTER, web_service, [])
        assert fake_client.calls == []
        assert len(fake_client.load_balancers[1].services) == 2

    async def test_target_added_and_stale_target_kept(
        self, reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080)], targets=[5])
        nodes = [make_node("node-b", server_id=7)]

        await reconciler.ensure_load_balancer(CLUSTER, web_service, nodes)

        assert fake_client.calls == [("add_target", 7)]
        stored = fake_client.load_balancers[1]
        assert {t.server_id for t in stored.targets} == {5, 7}

    async def test_existing_target_untouched(self, reconciler, fake_client, web_service):
        seed(fake_client, web_service, services=[(80, 30080)], targets=[5])
        nodes = [make_node("node-a", server_id=5), make_node("node-b", server_id=7)]

        await reconciler.ensure_load_balancer(CLUSTER, web_service, nodes)

        assert fake_client.calls == [("add_target", 7)]

    async def test_duplicate_nodes_add_one_target(
        self, reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080)])
        nodes = [make_node("a", server_id=7), make_node("a-again", server_id=7)]

        await reconciler.ensure_load_balancer(CLUSTER, web_service, nodes)

        assert fake_client.calls == [("add_target", 7)]

    async def test_node_resolved_by_name(self, reconciler, fake_client, web_service):
        seed(fake_client, web_service, services=[(80, 30080)])
        fake_client.servers = [make_server(9, "node-c")]

        await reconciler.ensure_load_balancer(CLUSTER, web_service, [Node(name="node-c")])

        assert fake_client.calls == [("add_target", 9)]

    async def test_unknown_node_raises_not_found(
        self, reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080)])
        with pytest.raises(NotFoundError):
            await reconciler.ensure_load_balancer(
                CLUSTER, web_service, [Node(name="ghost")]
            )

    async def test_malformed_provider_id_raises(
        self, reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080)])
        node = Node(name="n", provider_id="aws:///eu-west-1/i-123")
        with pytest.raises(MalformedIdentifierError):
            await reconciler.ensure_load_balancer(CLUSTER, web_service, [node])

    async def test_failed_creation_action_raises(
        self, reconciler, fake_client, web_service
    ):
        fake_client.final_action_status = "error"
        fake_client.final_action_error = {
            "code": "resource_unavailable",
            "message": "no capacity",
        }
        with pytest.raises(ActionFailedError) as exc_info:
            await reconciler.ensure_load_balancer(CLUSTER, web_service, [])

        assert exc_info.value.reason == "no capacity"
        assert "unable to create new loadbalancer" in str(exc_info.value)

    async def test_events_published(self, fake_client, resolver, waiter, web_service):
        event_bus = EventBus()
        subscriber_id, subscription = await event_bus.subscribe()
        reconciler = LoadBalancerReconciler(
            fake_client, resolver, waiter, event_bus=event_bus
        )

        await reconciler.ensure_load_balancer(
            CLUSTER, web_service, [make_node("a", server_id=5)]
        )
        await event_bus.unsubscribe(subscriber_id)

        events = [event async for event in subscription]
        assert [e.event_type for e in events] == [
            EventType.CREATED,
            EventType.MODIFIED,
            EventType.MODIFIED,
        ]
        assert all(e.object_kind == "LoadBalancer" for e in events)


# ==================== Prune mode ====================


@pytest.mark.asyncio
class TestPruneMode:
    """Tests for symmetric convergence with pruning enabled."""

    async def test_removes_stale_listener(
        self, pruning_reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080), (8080, 31000)])

        await pruning_reconciler.ensure_load_balancer(CLUSTER, web_service, [])

        assert fake_client.calls == [("delete_service", 8080)]

    async def test_removes_stale_target(
        self, pruning_reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080)], targets=[5])

        await pruning_reconciler.ensure_load_balancer(
            CLUSTER, web_service, [make_node("b", server_id=7)]
        )

        assert fake_client.calls == [("add_target", 7), ("remove_target", 5)]
        assert {t.server_id for t in fake_client.load_balancers[1].targets} == {7}

    async def test_converged_state_is_untouched(
        self, pruning_reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 30080)], targets=[5])

        await pruning_reconciler.ensure_load_balancer(
            CLUSTER, web_service, [make_node("a", server_id=5)]
        )

        assert fake_client.calls == []


# ==================== UpdateLoadBalancer ====================


@pytest.mark.asyncio
class TestUpdateLoadBalancer:
    """Tests for target-only convergence."""

    async def test_missing_load_balancer_raises(self, reconciler, fake_client, web_service):
        with pytest.raises(NotFoundError):
            await reconciler.update_load_balancer(
                CLUSTER, web_service, [make_node("a", server_id=5)]
            )
        assert fake_client.calls == []

    async def test_only_targets_are_converged(
        self, reconciler, fake_client, web_service
    ):
        seed(fake_client, web_service, services=[(80, 1)], targets=[5])

        await reconciler.update_load_balancer(
            CLUSTER, web_service, [make_node("a", server_id=5), make_node("b", server_id=7)]
        )

        assert fake_client.calls == [("add_target", 7)]


# ==================== EnsureLoadBalancerDeleted ====================


@pytest.mark.asyncio
class TestEnsureLoadBalancerDeleted:
    """Tests for teardown."""

    async def test_absent_is_noop(self, reconciler, fake_client, web_service):
        await reconciler.ensure_load_balancer_deleted(CLUSTER, web_service)
        assert fake_client.calls == []

    async def test_deletes_existing(self, reconciler, fake_client, web_service):
        seed(fake_client, web_service)
        await reconciler.ensure_load_balancer_deleted(CLUSTER, web_service)
        assert fake_client.calls == [("delete_load_balancer", 1)]
        assert fake_client.load_balancers == {}
