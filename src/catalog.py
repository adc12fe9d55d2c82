"""Resource templates for the application stack.

One VPC (two public + two private subnets, NAT egress), an ECS cluster with
Fargate or EC2 capacity behind an application load balancer, an ECR
repository, and optional managed databases. A bastion host exists whenever
any database is selected so operators can reach the private subnets.

Presence rules:
- ec2 capacity (launch template, autoscaling group, capacity provider) only
  when compute_mode == 'ec2'
- service autoscaling only when enable_autoscaling
- mysql / redis / documentdb resources only when selected
- bastion host and its security group only when any database is selected
"""

from config import ConfigurationRecord
from resources import Ref, ResourceTemplate, identity_of

VPC_CIDR = '10.0.0.0/16'
CONTAINER_PORT = 80

# (logical name, cidr, az suffix)
PUBLIC_SUBNETS = [('public_a', '10.0.1.0/24', 'a'), ('public_b', '10.0.2.0/24', 'b')]
PRIVATE_SUBNETS = [('private_a', '10.0.11.0/24', 'a'), ('private_b', '10.0.12.0/24', 'b')]

ECS_OPTIMIZED_AMI = 'resolve:ssm:/aws/service/ecs/optimized-ami/amazon-linux-2023/recommended/image_id'
BASTION_AMI = 'resolve:ssm:/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-x86_64'

VPC = identity_of('aws_vpc', 'main')
IGW = identity_of('aws_internet_gateway', 'main')
NAT_EIP = identity_of('aws_eip', 'nat')
NAT = identity_of('aws_nat_gateway', 'main')
ALB_SG = identity_of('aws_security_group', 'alb')
TASKS_SG = identity_of('aws_security_group', 'ecs_tasks')
BASTION_SG = identity_of('aws_security_group', 'bastion')
ECR = identity_of('aws_ecr_repository', 'app')
CLUSTER = identity_of('aws_ecs_cluster', 'main')
LOG_GROUP = identity_of('aws_cloudwatch_log_group', 'app')
EXECUTION_ROLE = identity_of('aws_iam_role', 'task_execution')
ALB = identity_of('aws_lb', 'main')
TARGET_GROUP = identity_of('aws_lb_target_group', 'app')
LISTENER = identity_of('aws_lb_listener', 'http')
TASK_DEFINITION = identity_of('aws_ecs_task_definition', 'app')
SERVICE = identity_of('aws_ecs_service', 'app')
INSTANCE_ROLE = identity_of('aws_iam_role', 'ecs_instance')
INSTANCE_PROFILE = identity_of('aws_iam_instance_profile', 'ecs_instance')
LAUNCH_TEMPLATE = identity_of('aws_launch_template', 'ecs')
ASG = identity_of('aws_autoscaling_group', 'ecs')
CAPACITY_PROVIDER = identity_of('aws_ecs_capacity_provider', 'ec2')
CLUSTER_CAPACITY = identity_of('aws_ecs_cluster_capacity_providers', 'main')
SCALING_TARGET = identity_of('aws_appautoscaling_target', 'ecs_service')
MYSQL = identity_of('aws_db_instance', 'mysql')
MYSQL_SG = identity_of('aws_security_group', 'mysql')
MYSQL_SUBNETS = identity_of('aws_db_subnet_group', 'mysql')
REDIS = identity_of('aws_elasticache_cluster', 'redis')
REDIS_SG = identity_of('aws_security_group', 'redis')
REDIS_SUBNETS = identity_of('aws_elasticache_subnet_group', 'redis')
DOCDB = identity_of('aws_docdb_cluster', 'documentdb')
DOCDB_SG = identity_of('aws_security_group', 'documentdb')
DOCDB_SUBNETS = identity_of('aws_docdb_subnet_group', 'documentdb')
BASTION = identity_of('aws_instance', 'bastion')

# Resource types that only exist for selected databases
DATABASE_TYPES = frozenset({
    'aws_db_instance',
    'aws_db_subnet_group',
    'aws_elasticache_cluster',
    'aws_elasticache_subnet_group',
    'aws_docdb_cluster',
    'aws_docdb_cluster_instance',
    'aws_docdb_subnet_group',
})

BASTION_IDENTITIES = frozenset({BASTION, BASTION_SG})


def _subnet_ref(name: str) -> Ref:
    return Ref(identity_of('aws_subnet', name))


def _private_subnet_ids() -> list:
    return [_subnet_ref(name) for name, _, _ in PRIVATE_SUBNETS]


def _public_subnet_ids() -> list:
    return [_subnet_ref(name) for name, _, _ in PUBLIC_SUBNETS]


def _egress_all() -> list[dict]:
    return [{'protocol': '-1', 'from_port': 0, 'to_port': 0, 'cidr_blocks': ['0.0.0.0/0']}]


def _ingress_from(port: int, *security_groups: str) -> list[dict]:
    """Ingress rules allowing a TCP port from other security groups."""
    return [
        {
            'protocol': 'tcp',
            'from_port': port,
            'to_port': port,
            'security_groups': [Ref(sg)],
        }
        for sg in security_groups
    ]


def _is_ec2(c: ConfigurationRecord) -> bool:
    return c.compute_mode == 'ec2'


def _has_mysql(c: ConfigurationRecord) -> bool:
    return c.has_feature('mysql')


def _has_redis(c: ConfigurationRecord) -> bool:
    return c.has_feature('redis')


def _has_documentdb(c: ConfigurationRecord) -> bool:
    return c.has_feature('documentdb')


def _has_database(c: ConfigurationRecord) -> bool:
    return c.has_database


def _database_ingress(port: int):
    """Database security groups admit the ECS tasks and the bastion host."""
    def build(c: ConfigurationRecord) -> list[dict]:
        return _ingress_from(port, TASKS_SG, BASTION_SG)
    return build


# -----------------------------------------------------------------------------
# Network
# -----------------------------------------------------------------------------

def _network_templates() -> list[ResourceTemplate]:
    templates = [
        ResourceTemplate(
            type='aws_vpc',
            name='main',
            description='Application VPC',
            attributes=lambda c: {
                'cidr_block': VPC_CIDR,
                'enable_dns_hostnames': True,
                'enable_dns_support': True,
                'tags': c.tags_for(c.name('vpc')),
            },
        ),
        ResourceTemplate(
            type='aws_internet_gateway',
            name='main',
            description='Internet gateway for public subnets',
            attributes=lambda c: {
                'vpc_id': Ref(VPC),
                'tags': c.tags_for(c.name('igw')),
            },
        ),
        ResourceTemplate(
            type='aws_eip',
            name='nat',
            description='Elastic IP for the NAT gateway',
            depends_on=(IGW,),
            attributes=lambda c: {
                'domain': 'vpc',
                'tags': c.tags_for(c.name('nat-eip')),
            },
        ),
        ResourceTemplate(
            type='aws_nat_gateway',
            name='main',
            description='NAT gateway for private subnet egress',
            attributes=lambda c: {
                'allocation_id': Ref(NAT_EIP),
                'subnet_id': _subnet_ref('public_a'),
                'tags': c.tags_for(c.name('nat')),
            },
        ),
        ResourceTemplate(
            type='aws_route_table',
            name='public',
            description='Public route table (default route via IGW)',
            attributes=lambda c: {
                'vpc_id': Ref(VPC),
                'routes': [{'cidr_block': '0.0.0.0/0', 'gateway_id': Ref(IGW)}],
                'tags': c.tags_for(c.name('public-rt')),
            },
        ),
        ResourceTemplate(
            type='aws_route_table',
            name='private',
            description='Private route table (default route via NAT)',
            attributes=lambda c: {
                'vpc_id': Ref(VPC),
                'routes': [{'cidr_block': '0.0.0.0/0', 'nat_gateway_id': Ref(NAT)}],
                'tags': c.tags_for(c.name('private-rt')),
            },
        ),
    ]

    for subnets, public in ((PUBLIC_SUBNETS, True), (PRIVATE_SUBNETS, False)):
        route_table = identity_of('aws_route_table', 'public' if public else 'private')
        for name, cidr, az in subnets:
            templates.append(ResourceTemplate(
                type='aws_subnet',
                name=name,
                description=f"{'Public' if public else 'Private'} subnet in zone {az}",
                attributes=_subnet_attributes(name, cidr, az, public),
            ))
            templates.append(ResourceTemplate(
                type='aws_route_table_association',
                name=name,
                description=f'Route table association for {name}',
                attributes=_association_attributes(name, route_table),
            ))

    return templates


def _subnet_attributes(name: str, cidr: str, az: str, public: bool):
    def build(c: ConfigurationRecord) -> dict:
        return {
            'vpc_id': Ref(VPC),
            'cidr_block': cidr,
            'availability_zone': f'{c.region}{az}',
            'map_public_ip_on_launch': public,
            'tags': c.tags_for(c.name(name.replace('_', '-'))),
        }
    return build


def _association_attributes(subnet: str, route_table: str):
    def build(c: ConfigurationRecord) -> dict:
        return {
            'subnet_id': _subnet_ref(subnet),
            'route_table_id': Ref(route_table),
        }
    return build


# -----------------------------------------------------------------------------
# Load balancer and security groups
# -----------------------------------------------------------------------------

def _edge_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            type='aws_security_group',
            name='alb',
            description='Load balancer security group (HTTP/HTTPS from anywhere)',
            attributes=lambda c: {
                'name': c.name('alb-sg'),
                'vpc_id': Ref(VPC),
                'ingress': [
                    {'protocol': 'tcp', 'from_port': port, 'to_port': port, 'cidr_blocks': ['0.0.0.0/0']}
                    for port in (80, 443)
                ],
                'egress': _egress_all(),
                'tags': c.tags_for(c.name('alb-sg')),
            },
        ),
        ResourceTemplate(
            type='aws_security_group',
            name='ecs_tasks',
            description='ECS task security group (container port from the ALB)',
            attributes=lambda c: {
                'name': c.name('ecs-tasks-sg'),
                'vpc_id': Ref(VPC),
                'ingress': _ingress_from(CONTAINER_PORT, ALB_SG),
                'egress': _egress_all(),
                'tags': c.tags_for(c.name('ecs-tasks-sg')),
            },
        ),
        ResourceTemplate(
            type='aws_lb',
            name='main',
            description='Application load balancer',
            attributes=lambda c: {
                'name': c.name('alb'),
                'load_balancer_type': 'application',
                'internal': False,
                'subnets': _public_subnet_ids(),
                'security_groups': [Ref(ALB_SG)],
                'enable_deletion_protection': c.is_production,
                'tags': c.tags_for(c.name('alb')),
            },
        ),
        ResourceTemplate(
            type='aws_lb_target_group',
            name='app',
            description='Target group for ECS tasks',
            attributes=lambda c: {
                'name': c.name('tg'),
                'port': CONTAINER_PORT,
                'protocol': 'HTTP',
                'target_type': 'ip',
                'vpc_id': Ref(VPC),
                'health_check': {'path': '/', 'matcher': '200-399', 'interval': 30},
                'tags': c.tags_for(c.name('tg')),
            },
        ),
        ResourceTemplate(
            type='aws_lb_listener',
            name='http',
            description='HTTP listener forwarding to the target group',
            attributes=lambda c: {
                'load_balancer_arn': Ref(ALB, 'arn'),
                'port': 80,
                'protocol': 'HTTP',
                'default_action': {'type': 'forward', 'target_group_arn': Ref(TARGET_GROUP, 'arn')},
            },
        ),
    ]


# -----------------------------------------------------------------------------
# Compute (ECS)
# -----------------------------------------------------------------------------

def _container_environment(c: ConfigurationRecord) -> list[dict]:
    """Connection settings for the selected databases."""
    env = [{'name': 'APP_ENV', 'value': c.environment}]
    if _has_mysql(c):
        env.append({'name': 'MYSQL_HOST', 'value': Ref(MYSQL, 'address')})
    if _has_redis(c):
        env.append({'name': 'REDIS_HOST', 'value': Ref(REDIS, 'address')})
    if _has_documentdb(c):
        env.append({'name': 'DOCDB_HOST', 'value': Ref(DOCDB, 'endpoint')})
    return env


def _task_definition(c: ConfigurationRecord) -> dict:
    cpu, memory = (1024, 2048) if c.is_production else (256, 512)
    return {
        'family': c.resource_prefix,
        'requires_compatibilities': ['EC2'] if _is_ec2(c) else ['FARGATE'],
        'network_mode': 'awsvpc',
        'cpu': cpu,
        'memory': memory,
        'execution_role_arn': Ref(EXECUTION_ROLE, 'arn'),
        'container_definitions': [{
            'name': c.app_name,
            'image': Ref(ECR, 'repository_url'),
            'essential': True,
            'portMappings': [{'containerPort': CONTAINER_PORT, 'protocol': 'tcp'}],
            'environment': _container_environment(c),
            'logConfiguration': {
                'logDriver': 'awslogs',
                'options': {
                    'awslogs-group': Ref(LOG_GROUP, 'name'),
                    'awslogs-region': c.region,
                    'awslogs-stream-prefix': 'ecs',
                },
            },
        }],
        'tags': c.tags_for(c.name('task')),
    }


def _service(c: ConfigurationRecord) -> dict:
    attrs = {
        'name': c.name('service'),
        'cluster': Ref(CLUSTER, 'arn'),
        'task_definition': Ref(TASK_DEFINITION, 'arn'),
        'desired_count': 2 if c.is_production else 1,
        'network_configuration': {
            'subnets': _private_subnet_ids(),
            'security_groups': [Ref(TASKS_SG)],
            'assign_public_ip': False,
        },
        'load_balancer': {
            'target_group_arn': Ref(TARGET_GROUP, 'arn'),
            'container_name': c.app_name,
            'container_port': CONTAINER_PORT,
        },
        'tags': c.tags_for(c.name('service')),
    }
    if _is_ec2(c):
        attrs['capacity_provider_strategy'] = [
            {'capacity_provider': Ref(CAPACITY_PROVIDER, 'name'), 'weight': 1},
        ]
    else:
        attrs['launch_type'] = 'FARGATE'
    return attrs


def _service_depends_on(c: ConfigurationRecord) -> tuple:
    if _is_ec2(c):
        return (LISTENER, CLUSTER_CAPACITY)
    return (LISTENER,)


def _assume_role_policy(service: str) -> dict:
    return {
        'Version': '2012-10-17',
        'Statement': [{
            'Effect': 'Allow',
            'Principal': {'Service': service},
            'Action': 'sts:AssumeRole',
        }],
    }


def _compute_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            type='aws_ecr_repository',
            name='app',
            description='Container image repository',
            attributes=lambda c: {
                'name': c.name('ecr'),
                'image_tag_mutability': 'IMMUTABLE' if c.is_production else 'MUTABLE',
                'image_scanning_configuration': {'scan_on_push': True},
                'tags': c.tags_for(c.name('ecr')),
            },
        ),
        ResourceTemplate(
            type='aws_ecs_cluster',
            name='main',
            description='ECS cluster',
            attributes=lambda c: {
                'name': c.name('cluster'),
                'settings': [{
                    'name': 'containerInsights',
                    'value': 'enabled' if c.is_production else 'disabled',
                }],
                'tags': c.tags_for(c.name('cluster')),
            },
        ),
        ResourceTemplate(
            type='aws_cloudwatch_log_group',
            name='app',
            description='Container log group',
            attributes=lambda c: {
                'name': f'/ecs/{c.resource_prefix}',
                'retention_in_days': 30 if c.is_production else 7,
                'tags': c.tags_for(c.name('logs')),
            },
        ),
        ResourceTemplate(
            type='aws_iam_role',
            name='task_execution',
            description='Task execution role (image pull, log delivery)',
            attributes=lambda c: {
                'name': c.name('task-execution'),
                'assume_role_policy': _assume_role_policy('ecs-tasks.amazonaws.com'),
                'managed_policy_arns': [
                    'arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy',
                ],
                'tags': c.tags_for(c.name('task-execution')),
            },
        ),
        ResourceTemplate(
            type='aws_ecs_task_definition',
            name='app',
            description='Application task definition',
            attributes=_task_definition,
        ),
        ResourceTemplate(
            type='aws_ecs_service',
            name='app',
            description='Application service behind the load balancer',
            depends_on=_service_depends_on,
            attributes=_service,
        ),
    ]


def _ec2_capacity_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            type='aws_iam_role',
            name='ecs_instance',
            description='Container instance role',
            present=_is_ec2,
            attributes=lambda c: {
                'name': c.name('ecs-instance'),
                'assume_role_policy': _assume_role_policy('ec2.amazonaws.com'),
                'managed_policy_arns': [
                    'arn:aws:iam::aws:policy/service-role/AmazonEC2ContainerServiceforEC2Role',
                ],
                'tags': c.tags_for(c.name('ecs-instance')),
            },
        ),
        ResourceTemplate(
            type='aws_iam_instance_profile',
            name='ecs_instance',
            description='Instance profile for container instances',
            present=_is_ec2,
            attributes=lambda c: {
                'name': c.name('ecs-instance'),
                'role': Ref(INSTANCE_ROLE, 'name'),
            },
        ),
        ResourceTemplate(
            type='aws_launch_template',
            name='ecs',
            description='Launch template for container instances',
            present=_is_ec2,
            depends_on=(CLUSTER,),
            attributes=lambda c: {
                'name': c.name('ecs-lt'),
                'image_id': ECS_OPTIMIZED_AMI,
                'instance_type': 't3.medium' if c.is_production else 't3.small',
                'iam_instance_profile': {'arn': Ref(INSTANCE_PROFILE, 'arn')},
                'vpc_security_group_ids': [Ref(TASKS_SG)],
                'user_data': f"#!/bin/bash\necho ECS_CLUSTER={c.name('cluster')} >> /etc/ecs/ecs.config\n",
                'tags': c.tags_for(c.name('ecs-lt')),
            },
        ),
        ResourceTemplate(
            type='aws_autoscaling_group',
            name='ecs',
            description='Container instance autoscaling group',
            present=_is_ec2,
            attributes=lambda c: {
                'name': c.name('ecs-asg'),
                'vpc_zone_identifier': _private_subnet_ids(),
                'launch_template': {'id': Ref(LAUNCH_TEMPLATE), 'version': '$Latest'},
                'min_size': 2 if c.is_production else 1,
                'max_size': 6 if c.is_production else 3,
                'desired_capacity': 2 if c.is_production else 1,
                'tags': c.tags_for(c.name('ecs-instance')),
            },
        ),
        ResourceTemplate(
            type='aws_ecs_capacity_provider',
            name='ec2',
            description='Capacity provider backed by the autoscaling group',
            present=_is_ec2,
            attributes=lambda c: {
                'name': c.name('ec2-cp'),
                'auto_scaling_group_provider': {
                    'auto_scaling_group_arn': Ref(ASG, 'arn'),
                    'managed_scaling': {'status': 'ENABLED', 'target_capacity': 100},
                },
                'tags': c.tags_for(c.name('ec2-cp')),
            },
        ),
        ResourceTemplate(
            type='aws_ecs_cluster_capacity_providers',
            name='main',
            description='Attach the capacity provider to the cluster',
            present=_is_ec2,
            attributes=lambda c: {
                'cluster_name': Ref(CLUSTER, 'name'),
                'capacity_providers': [Ref(CAPACITY_PROVIDER, 'name')],
            },
        ),
    ]


def _autoscaling_templates() -> list[ResourceTemplate]:
    def enabled(c: ConfigurationRecord) -> bool:
        return c.enable_autoscaling

    return [
        ResourceTemplate(
            type='aws_appautoscaling_target',
            name='ecs_service',
            description='Scalable target for the ECS service',
            present=enabled,
            depends_on=(SERVICE,),
            attributes=lambda c: {
                'service_namespace': 'ecs',
                'resource_id': f"service/{c.name('cluster')}/{c.name('service')}",
                'scalable_dimension': 'ecs:service:DesiredCount',
                'min_capacity': 2 if c.is_production else 1,
                'max_capacity': 10 if c.is_production else 4,
            },
        ),
        ResourceTemplate(
            type='aws_appautoscaling_policy',
            name='cpu',
            description='Target tracking on average CPU',
            present=enabled,
            depends_on=(SCALING_TARGET,),
            attributes=lambda c: {
                'name': c.name('cpu-scaling'),
                'policy_type': 'TargetTrackingScaling',
                'service_namespace': 'ecs',
                'resource_id': f"service/{c.name('cluster')}/{c.name('service')}",
                'scalable_dimension': 'ecs:service:DesiredCount',
                'target_tracking': {
                    'predefined_metric_type': 'ECSServiceAverageCPUUtilization',
                    'target_value': 70.0,
                },
            },
        ),
    ]


# -----------------------------------------------------------------------------
# Databases and bastion
# -----------------------------------------------------------------------------

def _bastion_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            type='aws_security_group',
            name='bastion',
            description='Bastion security group (SSH)',
            present=_has_database,
            attributes=lambda c: {
                'name': c.name('bastion-sg'),
                'vpc_id': Ref(VPC),
                'ingress': [{'protocol': 'tcp', 'from_port': 22, 'to_port': 22, 'cidr_blocks': ['0.0.0.0/0']}],
                'egress': _egress_all(),
                'tags': c.tags_for(c.name('bastion-sg')),
            },
        ),
        ResourceTemplate(
            type='aws_instance',
            name='bastion',
            description='Bastion host for database access',
            present=_has_database,
            attributes=lambda c: {
                'ami': BASTION_AMI,
                'instance_type': 't3.micro',
                'subnet_id': _subnet_ref('public_a'),
                'vpc_security_group_ids': [Ref(BASTION_SG)],
                'associate_public_ip_address': True,
                'tags': c.tags_for(c.name('bastion')),
            },
        ),
    ]


def _database_security_group(name: str, port: int, present) -> ResourceTemplate:
    ingress = _database_ingress(port)
    return ResourceTemplate(
        type='aws_security_group',
        name=name,
        description=f'{name} security group (port {port} from tasks and bastion)',
        present=present,
        attributes=lambda c: {
            'name': c.name(f'{name}-sg'),
            'vpc_id': Ref(VPC),
            'ingress': ingress(c),
            'egress': _egress_all(),
            'tags': c.tags_for(c.name(f'{name}-sg')),
        },
    )


def _mysql_templates() -> list[ResourceTemplate]:
    return [
        _database_security_group('mysql', 3306, _has_mysql),
        ResourceTemplate(
            type='aws_db_subnet_group',
            name='mysql',
            description='RDS subnet group (private subnets)',
            present=_has_mysql,
            attributes=lambda c: {
                'name': c.name('mysql-subnets'),
                'subnet_ids': _private_subnet_ids(),
                'tags': c.tags_for(c.name('mysql-subnets')),
            },
        ),
        ResourceTemplate(
            type='aws_db_instance',
            name='mysql',
            description='MySQL database instance',
            present=_has_mysql,
            attributes=lambda c: {
                'identifier': c.name('mysql'),
                'engine': 'mysql',
                'engine_version': '8.0',
                'instance_class': 'db.t3.medium' if c.is_production else 'db.t3.micro',
                'allocated_storage': 100 if c.is_production else 20,
                'username': 'admin',
                'manage_master_user_password': True,
                'db_subnet_group_name': Ref(MYSQL_SUBNETS, 'name'),
                'vpc_security_group_ids': [Ref(MYSQL_SG)],
                'multi_az': c.is_production,
                'deletion_protection': c.is_production,
                'skip_final_snapshot': not c.is_production,
                'tags': c.tags_for(c.name('mysql')),
            },
        ),
    ]


def _redis_templates() -> list[ResourceTemplate]:
    return [
        _database_security_group('redis', 6379, _has_redis),
        ResourceTemplate(
            type='aws_elasticache_subnet_group',
            name='redis',
            description='ElastiCache subnet group (private subnets)',
            present=_has_redis,
            attributes=lambda c: {
                'name': c.name('redis-subnets'),
                'subnet_ids': _private_subnet_ids(),
            },
        ),
        ResourceTemplate(
            type='aws_elasticache_cluster',
            name='redis',
            description='Redis cache cluster',
            present=_has_redis,
            attributes=lambda c: {
                'cluster_id': c.name('redis'),
                'engine': 'redis',
                'engine_version': '7.0',
                'node_type': 'cache.t3.medium' if c.is_production else 'cache.t3.micro',
                'num_cache_nodes': 1,
                'port': 6379,
                'subnet_group_name': Ref(REDIS_SUBNETS, 'name'),
                'security_group_ids': [Ref(REDIS_SG)],
                'tags': c.tags_for(c.name('redis')),
            },
        ),
    ]


def _documentdb_templates() -> list[ResourceTemplate]:
    return [
        _database_security_group('documentdb', 27017, _has_documentdb),
        ResourceTemplate(
            type='aws_docdb_subnet_group',
            name='documentdb',
            description='DocumentDB subnet group (private subnets)',
            present=_has_documentdb,
            attributes=lambda c: {
                'name': c.name('docdb-subnets'),
                'subnet_ids': _private_subnet_ids(),
                'tags': c.tags_for(c.name('docdb-subnets')),
            },
        ),
        ResourceTemplate(
            type='aws_docdb_cluster',
            name='documentdb',
            description='DocumentDB cluster',
            present=_has_documentdb,
            attributes=lambda c: {
                'cluster_identifier': c.name('docdb'),
                'engine': 'docdb',
                'master_username': 'docdbadmin',
                'manage_master_user_password': True,
                'db_subnet_group_name': Ref(DOCDB_SUBNETS, 'name'),
                'vpc_security_group_ids': [Ref(DOCDB_SG)],
                'deletion_protection': c.is_production,
                'skip_final_snapshot': not c.is_production,
                'tags': c.tags_for(c.name('docdb')),
            },
        ),
        ResourceTemplate(
            type='aws_docdb_cluster_instance',
            name='documentdb',
            description='DocumentDB primary instance',
            present=_has_documentdb,
            depends_on=(DOCDB,),
            attributes=lambda c: {
                'identifier': c.name('docdb-1'),
                'cluster_identifier': c.name('docdb'),
                'instance_class': 'db.r5.large' if c.is_production else 'db.t3.medium',
                'tags': c.tags_for(c.name('docdb-1')),
            },
        ),
    ]


STACK_TEMPLATES: tuple[ResourceTemplate, ...] = tuple(
    _network_templates()
    + _edge_templates()
    + _compute_templates()
    + _ec2_capacity_templates()
    + _autoscaling_templates()
    + _bastion_templates()
    + _mysql_templates()
    + _redis_templates()
    + _documentdb_templates()
)

# Names the pre-flight check expects to be free before the first apply
PREFLIGHT_NAMES = (
    ('aws_vpc', 'vpc'),
    ('aws_ecr_repository', 'ecr'),
    ('aws_ecs_cluster', 'cluster'),
)
