"""Tests for the stack catalog: which resources each configuration yields."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from catalog import BASTION_IDENTITIES, DATABASE_TYPES, STACK_TEMPLATES
from conftest import make_record
from resources import Ref, iter_refs
from stack_opr.graph import build

NETWORK = {
    'aws_vpc.main',
    'aws_internet_gateway.main',
    'aws_nat_gateway.main',
    'aws_subnet.public_a',
    'aws_subnet.public_b',
    'aws_subnet.private_a',
    'aws_subnet.private_b',
    'aws_route_table.public',
    'aws_route_table.private',
}

COMPUTE = {
    'aws_ecr_repository.app',
    'aws_ecs_cluster.main',
    'aws_ecs_task_definition.app',
    'aws_ecs_service.app',
    'aws_lb.main',
    'aws_lb_target_group.app',
    'aws_lb_listener.http',
}

EC2_CAPACITY = {
    'aws_launch_template.ecs',
    'aws_autoscaling_group.ecs',
    'aws_ecs_capacity_provider.ec2',
    'aws_ecs_cluster_capacity_providers.main',
}


def _types(graph) -> set[str]:
    return {node.type for node in graph.nodes.values()}


class TestTemplates:
    """Static checks on the template list."""

    def test_identities_unique(self):
        identities = [t.identity for t in STACK_TEMPLATES]
        assert len(identities) == len(set(identities))

    def test_every_template_has_description(self):
        assert all(t.description for t in STACK_TEMPLATES)


class TestPresence:
    """Presence rules per configuration."""

    def test_base_stack_always_present(self):
        graph = build(make_record())
        assert NETWORK | COMPUTE <= set(graph.nodes)

    def test_empty_features_no_database_or_bastion(self):
        graph = build(make_record())
        assert not (_types(graph) & DATABASE_TYPES)
        assert not (set(graph.nodes) & BASTION_IDENTITIES)
        assert 'aws_security_group.mysql' not in graph

    def test_mysql_fargate(self):
        graph = build(make_record(selected_features=frozenset({'mysql'})))
        nodes = set(graph.nodes)
        assert {
            'aws_db_instance.mysql',
            'aws_db_subnet_group.mysql',
            'aws_security_group.mysql',
            'aws_instance.bastion',
            'aws_security_group.bastion',
        } <= nodes
        assert not any(t.startswith(('aws_elasticache', 'aws_docdb')) for t in _types(graph))
        assert 'aws_security_group.redis' not in nodes
        assert 'aws_security_group.documentdb' not in nodes
        assert not (nodes & EC2_CAPACITY)

    def test_all_databases(self):
        graph = build(make_record(selected_features=frozenset({'mysql', 'redis', 'documentdb'})))
        for identity in ('aws_elasticache_cluster.redis', 'aws_docdb_cluster.documentdb',
                         'aws_docdb_cluster_instance.documentdb', 'aws_db_instance.mysql'):
            assert identity in graph

    def test_ec2_mode_adds_capacity(self):
        graph = build(make_record(compute_mode='ec2'))
        assert EC2_CAPACITY <= set(graph.nodes)
        assert 'aws_iam_instance_profile.ecs_instance' in graph

    def test_autoscaling(self):
        assert 'aws_appautoscaling_policy.cpu' not in build(make_record())
        graph = build(make_record(enable_autoscaling=True))
        assert 'aws_appautoscaling_target.ecs_service' in graph
        assert 'aws_appautoscaling_policy.cpu' in graph


class TestAttributes:
    """Attribute and dependency wiring."""

    def test_names_use_prefix(self):
        graph = build(make_record())
        assert graph.get_node('aws_ecr_repository.app').attributes['name'] == 'shop-dev-ecr'
        assert graph.get_node('aws_ecs_cluster.main').attributes['name'] == 'shop-dev-cluster'
        assert graph.get_node('aws_vpc.main').attributes['tags']['Name'] == 'shop-dev-vpc'

    def test_common_tags_applied(self):
        graph = build(make_record(tags={'Team': 'platform'}))
        tags = graph.get_node('aws_lb.main').attributes['tags']
        assert tags['ManagedBy'] == 'stack-driver'
        assert tags['Team'] == 'platform'

    def test_subnet_zones_follow_region(self):
        graph = build(make_record(region='eu-west-1'))
        assert graph.get_node('aws_subnet.private_b').attributes['availability_zone'] == 'eu-west-1b'

    def test_task_image_references_repository(self):
        node = build(make_record()).get_node('aws_ecs_task_definition.app')
        container = node.attributes['container_definitions'][0]
        assert container['image'] == Ref('aws_ecr_repository.app', 'repository_url')
        assert node.attributes['requires_compatibilities'] == ['FARGATE']

    def test_database_hosts_in_environment(self):
        node = build(make_record(selected_features=frozenset({'mysql'}))).get_node('aws_ecs_task_definition.app')
        env = {e['name']: e['value'] for e in node.attributes['container_definitions'][0]['environment']}
        assert env['MYSQL_HOST'] == Ref('aws_db_instance.mysql', 'address')
        assert 'REDIS_HOST' not in env

    def test_service_launch_type(self):
        fargate = build(make_record()).get_node('aws_ecs_service.app')
        assert fargate.attributes['launch_type'] == 'FARGATE'
        assert 'aws_lb_listener.http' in fargate.dependencies

        ec2 = build(make_record(compute_mode='ec2')).get_node('aws_ecs_service.app')
        assert 'launch_type' not in ec2.attributes
        assert 'aws_ecs_cluster_capacity_providers.main' in ec2.dependencies

    def test_mysql_ingress_from_tasks_and_bastion(self):
        graph = build(make_record(selected_features=frozenset({'mysql'})))
        refs = {r.identity for r in iter_refs(graph.get_node('aws_security_group.mysql').attributes['ingress'])}
        assert refs == {'aws_security_group.ecs_tasks', 'aws_security_group.bastion'}

    @pytest.mark.parametrize('environment,multi_az', [('dev', False), ('prod', True)])
    def test_mysql_sizing(self, environment, multi_az):
        graph = build(make_record(environment=environment, selected_features=frozenset({'mysql'})))
        assert graph.get_node('aws_db_instance.mysql').attributes['multi_az'] is multi_az
