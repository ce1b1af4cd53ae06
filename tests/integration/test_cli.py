import json

import pytest
from click.testing import CliRunner

from stackman.CLI.main import cli


@pytest.fixture
def invoke(engine):
    runner = CliRunner()

    def run(*args):
        return runner.invoke(cli, list(args), obj={"engine": engine})
    return run


def test_cli_help(invoke):
    result = invoke('--help')
    assert result.exit_code == 0
    for command in ('up', 'down', 'ps', 'ls', 'logs', 'convert', 'build', 'pull', 'push'):
        assert command in result.output


def test_cli_up_and_down(invoke, engine, demo_compose_file):
    result = invoke('-f', demo_compose_file, 'up')
    assert result.exit_code == 0, result.output
    assert 'Project demo is up.' in result.output
    assert 'Container demo_web_1 Started' in result.output
    assert len(engine.containers) == 3

    result = invoke('-f', demo_compose_file, 'down', '--volumes')
    assert result.exit_code == 0, result.output
    assert engine.containers == {}
    assert engine.volumes == {}


def test_cli_down_by_project_name(invoke, engine, demo_compose_file, tmp_path):
    invoke('-f', demo_compose_file, 'up')
    result = invoke('-p', 'demo', '--workdir', str(tmp_path / "elsewhere"), 'down')
    assert result.exit_code == 0, result.output
    assert 'Project demo removed.' in result.output
    assert engine.containers == {}


def test_cli_up_no_file(invoke, tmp_path):
    result = invoke('-f', str(tmp_path / 'non_existent.yml'), 'up')
    assert result.exit_code == 1
    assert 'Error: cannot read' in result.output


def test_cli_up_partial_failure(invoke, engine, demo_compose_file):
    engine.fail("create_container", "demo_db_1")
    result = invoke('-f', demo_compose_file, 'up')
    assert result.exit_code == 1
    assert 'Error: db:' in result.output
    assert 'Service web Skipped' in result.output


def test_cli_ps(invoke, demo_compose_file):
    invoke('-f', demo_compose_file, 'up')
    result = invoke('-f', demo_compose_file, 'ps')
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].split() == ['SERVICE', 'DESIRED', 'RUNNING']
    assert lines[2].split() == ['cache', '1', '1']
    assert [line.split()[0] for line in lines[2:]] == ['cache', 'db', 'web']


def test_cli_ls(invoke, demo_compose_file):
    invoke('-f', demo_compose_file, 'up')
    result = invoke('ls')
    assert result.exit_code == 0
    assert result.output.splitlines()[2].split() == ['demo', 'running(3)']


def test_cli_logs(invoke, engine, demo_compose_file):
    invoke('-f', demo_compose_file, 'up')
    web = next(c for c in engine.containers.values() if c.name == 'demo_web_1')
    engine.logs[web.id] = [b'\x01\x00\x00\x00\x00\x00\x00\x06ready\n']
    result = invoke('-p', 'demo', 'logs', '--no-follow')
    assert result.exit_code == 0, result.output
    assert 'web             | ready' in result.output


def test_cli_convert(invoke, demo_compose_file):
    result = invoke('-f', demo_compose_file, 'convert', '--format', 'json')
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert sorted(data['services']) == ['cache', 'db', 'web']


def test_cli_convert_to_file(invoke, demo_compose_file, tmp_path):
    out = tmp_path / 'resolved.yaml'
    result = invoke('-f', demo_compose_file, 'convert', '-o', str(out))
    assert result.exit_code == 0
    assert 'demo_default' in out.read_text()


def test_cli_convert_unsupported_format(invoke, demo_compose_file):
    result = invoke('-f', demo_compose_file, 'convert', '--format', 'toml')
    assert result.exit_code == 1
    assert "Error: unsupported format 'toml'" in result.output


def test_cli_pull(invoke, engine, demo_compose_file):
    result = invoke('-f', demo_compose_file, 'pull')
    assert result.exit_code == 0
    assert sorted(engine.called('pull_image')) == ['nginx:latest', 'postgres:16', 'redis:7']
