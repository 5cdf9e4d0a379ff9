#!/usr/bin/env python3
"""
ccmctl - operator CLI for the cloud controller.

Runs single reconciliation calls by hand: inspect and converge load
balancers for a Service described in a YAML/JSON file, list and mutate
pod-network routes, and look up the instance behind a node.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List

import click
import yaml
from tabulate import tabulate

from cloudprovider import CloudProvider, get_cloud_provider, register_builtin_providers
from cloudprovider.hcloud import PROVIDER_NAME
from config import LoggingConfig, get_config
from errors import CloudProviderError
from events import CloudEvent, EventBus
from models import Node, NodeAddress, NodeAddressType, Route, Service, ServicePort


def load_document(filename: str) -> Dict[str, Any]:
    """Read a YAML or JSON document."""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return yaml.safe_load(f) or {}
        return json.load(f)


def parse_service(data: Dict[str, Any]) -> Service:
    """Build a Service from the 'service' section of a document."""
    spec = data.get("service") or {}
    if "name" not in spec:
        raise click.BadParameter("document must contain service.name")

    try:
        ports = [
            ServicePort(
                port=int(p["port"]),
                node_port=int(p["nodePort"]),
                name=p.get("name", ""),
                protocol=p.get("protocol", "TCP"),
            )
            for p in spec.get("ports", [])
        ]
    except KeyError as e:
        raise click.BadParameter(f"service port is missing {e}")
    except (TypeError, ValueError) as e:
        raise click.BadParameter(f"invalid service port: {e}")

    return Service(
        name=spec["name"],
        namespace=spec.get("namespace", "default"),
        ports=ports,
    )


def parse_nodes(data: Dict[str, Any]) -> List[Node]:
    """Build Nodes from the 'nodes' section of a document."""
    nodes = []
    for n in data.get("nodes") or []:
        try:
            addresses = [
                NodeAddress(NodeAddressType(a["type"]), a["address"])
                for a in n.get("addresses", [])
            ]
            name = n["name"]
        except KeyError as e:
            raise click.BadParameter(f"node is missing {e}")
        except ValueError as e:
            raise click.BadParameter(f"invalid node address: {e}")

        nodes.append(
            Node(
                name=name,
                provider_id=n.get("providerID", ""),
                addresses=addresses,
            )
        )
    return nodes


def _build_provider(event_bus: EventBus) -> CloudProvider:
    register_builtin_providers()
    return get_cloud_provider(PROVIDER_NAME, get_config(), event_bus=event_bus)


def _echo_event(event: CloudEvent) -> None:
    ctx = click.get_current_context(silent=True)
    event_format = (ctx.find_root().obj or {}).get("event_format") if ctx else None
    if event_format == "json":
        click.echo(event.to_json())
        return
    click.echo(
        f"{event.event_type.value:<9} "
        f"{event.object_kind}/{event.object_name}: {event.message}"
    )


def _run(operation: Callable[[CloudProvider], Awaitable[Any]]) -> Any:
    """Run one provider operation and print the events it published."""

    async def runner():
        event_bus = EventBus()
        subscriber_id, subscription = await event_bus.subscribe()
        try:
            provider = _build_provider(event_bus)
            return await operation(provider)
        finally:
            await event_bus.unsubscribe(subscriber_id)
            async for event in subscription:
                _echo_event(event)

    try:
        return asyncio.run(runner())
    except (CloudProviderError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _require(component, what: str):
    if component is None:
        raise click.ClickException(f"{what} are not supported by this configuration")
    return component


def _ingress_table(ingress) -> str:
    rows = [[i.ip, i.hostname or ""] for i in ingress]
    return tabulate(rows, headers=["IP", "HOSTNAME"], tablefmt="simple")


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.option(
    "--event-format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Format of the published events printed by mutating commands",
)
@click.pass_context
def cli(ctx, log_level, event_format):
    """ccmctl - drive the cloud controller reconcilers by hand"""
    ctx.obj = {"event_format": event_format}
    level = log_level or LoggingConfig.from_env().level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table")
def routes(output):
    """List the routes of the configured network"""
    result = _run(lambda p: _require(p.routes(), "Routes").list_routes())

    if output == "json":
        click.echo(
            json.dumps(
                [
                    {
                        "name": r.name,
                        "destinationCIDR": r.destination_cidr,
                        "targetNode": r.target_node,
                        "blackhole": r.blackhole,
                    }
                    for r in result
                ],
                indent=2,
            )
        )
        return

    rows = [
        [r.name, r.destination_cidr, "<blackhole>" if r.blackhole else r.target_node]
        for r in result
    ]
    click.echo(tabulate(rows, headers=["NAME", "DESTINATION", "TARGET"], tablefmt="simple"))


@cli.command("route-create")
@click.argument("destination_cidr")
@click.option("--node", "node_name", default="", help="Target node name")
@click.option("--internal-ip", default=None, help="Internal IP of the target node")
def route_create(destination_cidr, node_name, internal_ip):
    """Create a route towards a node"""
    route = _route(destination_cidr, node_name, internal_ip)
    _run(lambda p: _require(p.routes(), "Routes").create_route(route))
    click.echo(f"Route {destination_cidr} ensured")


@cli.command("route-delete")
@click.argument("destination_cidr")
@click.option("--internal-ip", default=None, help="Gateway IP of the route")
def route_delete(destination_cidr, internal_ip):
    """Delete a route"""
    route = _route(destination_cidr, "", internal_ip)
    _run(lambda p: _require(p.routes(), "Routes").delete_route(route))
    click.echo(f"Route {destination_cidr} deleted")


def _route(destination_cidr: str, node_name: str, internal_ip) -> Route:
    addresses = []
    if internal_ip:
        addresses.append(NodeAddress(NodeAddressType.INTERNAL_IP, internal_ip))
    return Route(
        destination_cidr=destination_cidr,
        target_node=node_name or None,
        target_node_addresses=addresses,
    )


@cli.command("lb-status")
@click.argument("filename", type=click.Path(exists=True))
def lb_status(filename):
    """Show the load balancer of a Service"""
    data = load_document(filename)
    service = parse_service(data)
    cluster = data.get("cluster", "kubernetes")

    ingress, exists = _run(
        lambda p: _require(p.load_balancer(), "Load balancers").get_load_balancer(
            cluster, service
        )
    )
    if not exists:
        click.echo(f"No load balancer for {service.namespace}/{service.name}")
        return
    click.echo(_ingress_table(ingress))


@cli.command("lb-ensure")
@click.argument("filename", type=click.Path(exists=True))
def lb_ensure(filename):
    """Create or converge the load balancer of a Service"""
    data = load_document(filename)
    service = parse_service(data)
    nodes = parse_nodes(data)
    cluster = data.get("cluster", "kubernetes")

    ingress = _run(
        lambda p: _require(p.load_balancer(), "Load balancers").ensure_load_balancer(
            cluster, service, nodes
        )
    )
    click.echo(_ingress_table(ingress))


@cli.command("lb-update")
@click.argument("filename", type=click.Path(exists=True))
def lb_update(filename):
    """Converge the targets of an existing load balancer"""
    data = load_document(filename)
    service = parse_service(data)
    nodes = parse_nodes(data)
    cluster = data.get("cluster", "kubernetes")

    _run(
        lambda p: _require(p.load_balancer(), "Load balancers").update_load_balancer(
            cluster, service, nodes
        )
    )
    click.echo("Targets updated")


@cli.command("lb-delete")
@click.argument("filename", type=click.Path(exists=True))
@click.confirmation_option(prompt="Are you sure you want to delete this load balancer?")
def lb_delete(filename):
    """Delete the load balancer of a Service"""
    data = load_document(filename)
    service = parse_service(data)
    cluster = data.get("cluster", "kubernetes")

    _run(
        lambda p: _require(
            p.load_balancer(), "Load balancers"
        ).ensure_load_balancer_deleted(cluster, service)
    )
    click.echo("Load balancer deleted")


@cli.command()
@click.argument("node_name")
@click.option("--provider-id", default="", help="Stamped providerID of the node")
@click.option("--output", "-o", type=click.Choice(["table", "yaml"]), default="table")
def instance(node_name, provider_id, output):
    """Show the instance backing a node"""
    node = Node(name=node_name, provider_id=provider_id)
    metadata = _run(
        lambda p: _require(p.instances(), "Instances").instance_metadata(node)
    )

    if output == "yaml":
        click.echo(
            yaml.dump(
                {
                    "providerID": metadata.provider_id,
                    "instanceType": metadata.instance_type,
                    "zone": metadata.zone,
                    "region": metadata.region,
                    "addresses": [
                        {"type": a.type.value, "address": a.address}
                        for a in metadata.node_addresses
                    ],
                },
                default_flow_style=False,
            )
        )
        return

    click.echo(f"ProviderID: {metadata.provider_id}")
    click.echo(f"Type: {metadata.instance_type}")
    click.echo(f"Zone: {metadata.zone}")
    click.echo(f"Region: {metadata.region}")
    rows = [[a.type.value, a.address] for a in metadata.node_addresses]
    click.echo(tabulate(rows, headers=["TYPE", "ADDRESS"], tablefmt="simple"))


if __name__ == "__main__":
    cli()
