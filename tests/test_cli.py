"""Tests for CLI module."""

import socket
import sys
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import config as config_module
from cli import build_parser, main, provision, resolve_config
from config import CONFIG_ENV_VAR, KeyShareConfig
from provisioner import KeyPair, ProvisionError


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep the developer's real config out of the tests."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr(config_module, 'DEFAULT_CONFIG_FILE', tmp_path / 'absent' / 'config.yaml')


@pytest.fixture
def no_network():
    """Avoid touching real interfaces."""
    with patch('cli.get_primary_ip', return_value='192.0.2.10'), \
         patch('cli.get_username', return_value='tester'), \
         patch('cli.get_hostname', return_value='testhost'):
        yield


class TestParser:
    """Tests for argument parsing."""

    def test_positional_defaults_are_none(self):
        """Unset positionals defer to config defaults."""
        args = build_parser().parse_args([])

        assert args.key_name is None
        assert args.port is None
        assert args.timeout is None

    def test_positionals(self):
        args = build_parser().parse_args(['deploy', '9000', '60'])

        assert args.key_name == 'deploy'
        assert args.port == 9000
        assert args.timeout == 60

    def test_flags(self):
        args = build_parser().parse_args(['--yes', '--skip-provision', '--no-public-ip', '-v'])

        assert args.yes and args.skip_provision and args.no_public_ip and args.verbose


class TestResolveConfig:
    """Tests for config + CLI merging."""

    def test_defaults(self):
        cfg = resolve_config(build_parser().parse_args([]))

        assert cfg.key_name == 'id_rsa'
        assert cfg.port == 8000
        assert cfg.timeout == 300
        assert cfg.lookup_public_ip is True

    def test_cli_overrides_file(self, tmp_path):
        path = tmp_path / 'cfg.yaml'
        path.write_text('key_name: from_file\nport: 9100\n')

        cfg = resolve_config(build_parser().parse_args(['from_cli', '--config', str(path), '--no-public-ip']))

        assert cfg.key_name == 'from_cli'
        assert cfg.port == 9100
        assert cfg.lookup_public_ip is False


class TestProvision:
    """Tests for the provisioning sequence."""

    def test_full_sequence(self, tmp_path):
        """Preconditions, keygen, authorized_keys and daemon run in order."""
        cfg = KeyShareConfig(ssh_dir=tmp_path)
        key_pair = KeyPair(name='id_rsa', private_key=tmp_path / 'id_rsa', generated_at=None)
        calls = []

        with patch('cli.ensure_ssh_available', side_effect=lambda: calls.append('ssh')), \
             patch('cli.ensure_interpreter_available', side_effect=lambda: calls.append('python')), \
             patch('cli.generate_keypair', side_effect=lambda *a, **k: calls.append('keygen') or key_pair) as mock_gen, \
             patch('cli.install_authorized_key', side_effect=lambda *a: calls.append('authorized')), \
             patch('cli.enable_and_start_ssh_daemon', side_effect=lambda s: calls.append('daemon')):
            result = provision(cfg, 'alice', 'host1')

        assert result is key_pair
        assert calls == ['ssh', 'python', 'keygen', 'authorized', 'daemon']
        assert mock_gen.call_args.kwargs['comment'] == 'alice@host1'

    def test_declined_overwrite(self, ssh_dir):
        """Existing key plus a "no" answer cancels without generating."""
        cfg = KeyShareConfig(ssh_dir=ssh_dir)

        with patch('cli.ensure_ssh_available'), \
             patch('cli.ensure_interpreter_available'), \
             patch('cli.confirm', return_value=False), \
             patch('cli.generate_keypair') as mock_gen:
            assert provision(cfg, 'alice', 'host1') is None

        mock_gen.assert_not_called()


class TestMain:
    """End-to-end tests for main()."""

    def test_serves_existing_key_until_timeout(self, ssh_dir, no_network, capsys):
        """--skip-provision serves the key, times out and exits 0."""
        rc = main([
            'id_rsa', '0', '1',
            '--skip-provision', '--no-public-ip',
            '--ssh-dir', str(ssh_dir), '--bind', '127.0.0.1',
        ])

        assert rc == 0
        out = capsys.readouterr().out
        assert 'Key name: id_rsa' in out
        assert 'http://192.0.2.10:0/id_rsa' in out
        assert '=== Completed ===' in out
        assert 'No key files were downloaded.' in out

    def test_config_error(self, capsys):
        assert main(['id_rsa', '70000']) == 1

    def test_provision_error(self, tmp_path, no_network):
        """Missing key with --skip-provision is a provisioning failure."""
        rc = main(['id_rsa', '0', '1', '--skip-provision', '--no-public-ip', '--ssh-dir', str(tmp_path)])

        assert rc == 1

    def test_provision_failure_from_apt(self, tmp_path, no_network):
        with patch('cli.ensure_ssh_available', side_effect=ProvisionError('apt-get update failed')):
            rc = main(['id_rsa', '0', '1', '--no-public-ip', '--ssh-dir', str(tmp_path)])

        assert rc == 1

    def test_cancelled_overwrite(self, ssh_dir, no_network):
        with patch('cli.provision', return_value=None):
            rc = main(['id_rsa', '0', '1', '--no-public-ip', '--ssh-dir', str(ssh_dir)])

        assert rc == 1

    def test_busy_port_declined(self, ssh_dir, no_network, capsys):
        """Busy port without confirmation aborts before staging."""
        with patch('cli.is_port_in_use', return_value=True), \
             patch('cli.confirm', return_value=False), \
             patch('cli.Session') as mock_session:
            rc = main(['id_rsa', '8000', '1', '--skip-provision', '--no-public-ip', '--ssh-dir', str(ssh_dir)])

        assert rc == 1
        assert 'already in use' in capsys.readouterr().out
        mock_session.assert_not_called()

    def test_bind_error(self, ssh_dir, no_network, tmp_path):
        """Continuing past a busy port ends in a bind failure exit code."""
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(('127.0.0.1', 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        try:
            rc = main([
                'id_rsa', str(port), '1',
                '--skip-provision', '--no-public-ip', '--yes',
                '--ssh-dir', str(ssh_dir), '--bind', '127.0.0.1',
            ])
        finally:
            blocker.close()

        assert rc == 1

    def test_public_ip_lookup(self, ssh_dir, no_network, capsys):
        """Public IP is looked up unless disabled."""
        session = MagicMock()
        session.run.return_value = None
        session.downloads.return_value = ['id_rsa']
        with patch('cli.get_public_ip', return_value='203.0.113.7') as mock_public, \
             patch('cli.Session', return_value=session):
            rc = main(['id_rsa', '0', '1', '--skip-provision', '--ssh-dir', str(ssh_dir)])

        assert rc == 0
        mock_public.assert_called_once()
        out = capsys.readouterr().out
        assert 'Public IP: 203.0.113.7' in out
        assert 'Downloaded: id_rsa' in out
