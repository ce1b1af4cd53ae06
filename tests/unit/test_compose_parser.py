import os

import pytest
import yaml

from stackman.errors import ConfigurationError
from stackman.MODELS.service_definition import VolumeType
from stackman.PARSERS.compose_parser import ComposeParser, parse_duration


def write_compose(path, content):
    with open(path, 'w') as f:
        yaml.dump(content, f)
    return str(path)


def test_parse(tmp_path):
    compose_content = {
        'services': {
            'web': {
                'image': 'nginx:latest',
                'ports': ['80:80', '127.0.0.1:9000-9001:9000-9001/udp'],
                'environment': {
                    'DEBUG': True
                },
                'depends_on': {'db': {'condition': 'service_started'}},
            },
            'db': {
                'image': 'postgres:13',
                'volumes': ['db_data:/var/lib/postgresql/data', './init:/docker-entrypoint-initdb.d:ro'],
                'tmpfs': '/run',
            }
        },
        'volumes': {
            'db_data': {}
        }
    }
    compose_file = write_compose(tmp_path / "compose.yaml", compose_content)

    parser = ComposeParser(environment={})
    project = parser.parse(compose_file, project_name="My App")

    assert project.name == "myapp"
    assert project.config_files == [compose_file]
    assert project.working_dir == str(tmp_path)

    web = project.services['web']
    assert web.image == 'nginx:latest'
    assert web.environment == {'DEBUG': 'true'}
    assert web.depends_on == ['db']
    assert [(p.published, p.target, p.protocol, p.host_ip) for p in web.ports] == [
        (80, 80, 'tcp', None),
        (9000, 9000, 'udp', '127.0.0.1'),
        (9001, 9001, 'udp', '127.0.0.1'),
    ]

    db = project.services['db']
    assert project.volumes['db_data'].name == 'myapp_db_data'
    assert db.volumes[0].source == 'myapp_db_data'
    assert db.volumes[0].type == VolumeType.VOLUME
    assert db.volumes[1].type == VolumeType.BIND
    assert db.volumes[1].read_only
    assert db.volumes[2].type == VolumeType.TMPFS

    assert project.networks['default'].name == 'myapp_default'


def test_override_files_merge(tmp_path):
    base = write_compose(tmp_path / "compose.yaml", {
        'name': 'shop',
        'services': {'web': {'image': 'nginx', 'environment': {'A': '1', 'B': '1'}}},
    })
    override = write_compose(tmp_path / "compose.override.yaml", {
        'services': {'web': {'environment': {'B': '2'}}, 'worker': {'image': 'busybox'}},
    })
    project = ComposeParser(environment={}).load([base, override])
    assert project.name == 'shop'
    assert project.services['web'].environment == {'A': '1', 'B': '2'}
    assert project.service_names() == ['web', 'worker']
    assert project.config_files == [base, override]


def test_interpolation_and_dotenv(tmp_path):
    (tmp_path / ".env").write_text("TAG=1.2\nPORT=8000\n")
    (tmp_path / "web.env").write_text("FROM_FILE=yes\n")
    compose_file = write_compose(tmp_path / "compose.yaml", {
        'services': {'web': {
            'image': 'app:${TAG}',
            'ports': ['${PORT}:80'],
            'env_file': 'web.env',
            'environment': ['LEVEL=${LEVEL:-info}'],
        }},
    })
    project = ComposeParser(environment={'PORT': '9000'}).parse(compose_file)
    web = project.services['web']
    assert web.image == 'app:1.2'
    assert web.ports[0].published == 9000
    assert web.environment == {'FROM_FILE': 'yes', 'LEVEL': 'info'}


def test_default_file_and_project_name(tmp_path):
    project_dir = tmp_path / "Blog-Site"
    project_dir.mkdir()
    write_compose(project_dir / "docker-compose.yml", {'services': {'web': {'image': 'nginx'}}})
    project = ComposeParser(environment={}).load([], working_dir=str(project_dir))
    assert project.name == 'blog-site'

    project = ComposeParser(environment={'STACKMAN_PROJECT_NAME': 'fromenv'}).load([], working_dir=str(project_dir))
    assert project.name == 'fromenv'


def test_relative_files_resolve_against_current_directory(tmp_path, monkeypatch):
    sub = tmp_path / "sub"
    sub.mkdir()
    write_compose(sub / "compose.yaml", {'services': {'web': {'image': 'nginx'}}})
    monkeypatch.chdir(tmp_path)
    project = ComposeParser(environment={}).load([os.path.join("sub", "compose.yaml")])
    assert project.working_dir == str(sub)
    assert project.name == 'sub'


def test_parse_from_string_records_stdin(tmp_path):
    project = ComposeParser(environment={}).parse_from_string(
        "services:\n  web:\n    image: nginx\n", working_dir=str(tmp_path), project_name="piped"
    )
    assert project.config_files == ["-"]


def test_networks(tmp_path):
    compose_file = write_compose(tmp_path / "compose.yaml", {
        'name': 'demo',
        'services': {
            'web': {'image': 'nginx', 'networks': {'front': {'aliases': ['www']}}},
            'proxy': {'image': 'traefik', 'network_mode': 'host'},
        },
        'networks': {
            'front': {'driver': 'bridge'},
            'outside': {'external': True},
        },
    })
    project = ComposeParser(environment={}).parse(compose_file)
    assert project.networks['front'].name == 'demo_front'
    assert project.networks['outside'].name == 'outside'
    assert project.networks['outside'].external
    assert 'default' not in project.networks
    assert project.services['web'].networks['front'].aliases == ['www']


@pytest.mark.parametrize("content, message", [
    ({'services': {'web': {'image': 'nginx', 'networks': ['missing']}}}, "undefined network"),
    ({'services': {'web': {'image': 'nginx', 'volumes': ['missing:/data']}}}, "undefined volume"),
    ({'services': {'web': {'image': 'nginx', 'scale': -1}}}, "Service web"),
    ({'services': {'web': {'image': 'nginx', 'ports': ['80-81:80']}}}, "port ranges"),
    ({'services': {'web': {'image': '${TOKEN:?set a token}'}}}, "TOKEN"),
])
def test_invalid_configurations(tmp_path, content, message):
    compose_file = write_compose(tmp_path / "compose.yaml", content)
    with pytest.raises(ConfigurationError, match=message):
        ComposeParser(environment={}).parse(compose_file)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="cannot read"):
        ComposeParser(environment={}).load([str(tmp_path / "nope.yaml")])


def test_parse_duration():
    assert parse_duration("1m30s") == 90
    assert parse_duration("500ms") == 0.5
    assert parse_duration(10) == 10
    with pytest.raises(ConfigurationError):
        parse_duration("soon")
