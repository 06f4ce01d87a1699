import textwrap

import pytest
import yaml
from click.testing import CliRunner

from dockstack.CLI import main as cli_main
from dockstack.CLI.main import cli
from dockstack.CLIENT.docker_client import DockerClient

COMPOSE = textwrap.dedent("""
    services:
      web:
        image: nginx:latest
        ports: ["8080:80"]
        depends_on: [db]
        environment:
          GREETING: "cost $$5"
      db:
        image: postgres:16
""")


@pytest.fixture
def compose_file(tmp_path):
    path = tmp_path / "shop" / "docker-compose.yml"
    path.parent.mkdir()
    path.write_text(COMPOSE)
    return str(path)


@pytest.fixture
def runner(fake_daemon, monkeypatch):
    monkeypatch.setattr(cli_main, "DockerClient", lambda host: DockerClient(http_client=fake_daemon))
    return CliRunner()


def test_cli_help():
    result = CliRunner().invoke(cli, ['--help'])
    assert result.exit_code == 0
    for command in ('up', 'down', 'ps', 'logs', 'scale', 'restart', 'config', 'pull'):
        assert command in result.output


def test_config_prints_normalized_document(compose_file):
    result = CliRunner().invoke(cli, ['-f', compose_file, 'config'])
    assert result.exit_code == 0
    doc = yaml.safe_load(result.output)
    assert list(doc['services']) == ['web', 'db']
    assert doc['services']['web']['ports'] == ['8080:80']
    assert doc['services']['web']['environment'] == {'GREETING': 'cost $$5'}


def test_config_missing_file(tmp_path):
    result = CliRunner().invoke(cli, ['-f', str(tmp_path / 'nope.yml'), 'config'])
    assert result.exit_code == 1
    assert 'Cannot read compose file' in result.output


def test_up_ps_scale_down(runner, compose_file, fake_daemon):
    result = runner.invoke(cli, ['-f', compose_file, 'up'])
    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == ['Started db', 'Started web']
    assert fake_daemon.started_names() == ['shop_db_0', 'shop_web_0']

    result = runner.invoke(cli, ['-f', compose_file, 'ps'])
    assert result.exit_code == 0, result.output
    assert 'Stack shop: running (2 containers)' in result.output

    result = runner.invoke(cli, ['-f', compose_file, 'scale', 'web=3'])
    assert result.exit_code == 0, result.output
    assert 'web: 3 replicas running' in result.output

    result = runner.invoke(cli, ['-f', compose_file, 'restart', 'web'])
    assert 'Restarted 3 replicas of web' in result.output

    result = runner.invoke(cli, ['-f', compose_file, 'down'])
    assert result.exit_code == 0, result.output
    assert 'Removed 4 containers, 1 networks, 0 volumes.' in result.output
    assert fake_daemon.containers == {}


def test_project_name_option(runner, compose_file, fake_daemon):
    result = runner.invoke(cli, ['-f', compose_file, '-p', 'staging', 'up'])
    assert result.exit_code == 0, result.output
    assert 'staging_web_0' in fake_daemon.created_names()


def test_up_failure_exit_code(runner, compose_file, fake_daemon):
    fake_daemon.fail_start['db'] = 'port is already allocated'
    result = runner.invoke(cli, ['-f', compose_file, 'up'])
    assert result.exit_code == 1
    assert 'Failed  db: port is already allocated' in result.output
    assert 'Skipped web' in result.output


def test_logs(runner, compose_file, fake_daemon):
    runner.invoke(cli, ['-f', compose_file, 'up'])
    fake_daemon.logs['shop_web_0'] = ['GET / 200']
    result = runner.invoke(cli, ['-f', compose_file, 'logs', 'web'])
    assert result.exit_code == 0, result.output
    assert result.output == '[web] GET / 200\n'


def test_scale_bad_assignment(runner, compose_file):
    result = runner.invoke(cli, ['-f', compose_file, 'scale', 'web'])
    assert result.exit_code == 2
    assert 'expected SERVICE=N' in result.output


def test_restart_undeployed_service(runner, compose_file):
    result = runner.invoke(cli, ['-f', compose_file, 'restart', 'web'])
    assert result.exit_code == 1
    assert 'no running containers' in result.output


def test_pull(runner, compose_file, fake_daemon):
    result = runner.invoke(cli, ['-f', compose_file, 'pull'])
    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == ['Pulled nginx:latest', 'Pulled postgres:16']
