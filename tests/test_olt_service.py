import pytest
from prometheus_client import REGISTRY

from conftest import OPTICS_OUTPUT
from credentials import ConnectionCache, ConnectionParameters
from errors import InvalidOnt, MissingCredentials, SshTimeout, TelnetConnectionError
from olt_service import OPTICS_COMMAND, TEST_COMMAND, OLTCommandService
from telnet_runner import TelnetPrompts
from transport import CommandExecutionResult, ProtocolKind

ENV = {'OLT_HOST_DEFAULT': '10.0.0.1', 'OLT_USERNAME': 'isadmin', 'OLT_PASSWORD': 'secret'}


class RecordingRunner:
    """Runner double that records its calls and returns a canned result or raises"""

    def __init__(self, result=None, error=None):
        self.result = result or CommandExecutionResult(stdout=OPTICS_OUTPUT, stderr='', exit_code=0)
        self.error = error
        self.calls = []

    def __call__(self, params, command, **kwargs):
        self.calls.append((params, command, kwargs))
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def service_factory(make_config):
    def _build(protocol='telnet', result=None, error=None, **env):
        settings = make_config(PROTOCOL=protocol, **dict(ENV, **env))
        ssh, telnet = RecordingRunner(result, error), RecordingRunner(result, error)
        service = OLTCommandService(settings=settings, ssh_runner=ssh, telnet_runner=telnet)
        return service, ssh, telnet
    return _build


def test_optics_reading(service_factory):
    service, ssh, telnet = service_factory()

    reading = service.get_ont_optics('1/1/3/2/1')

    assert reading.ont_path == '1/1/3/2/1'
    assert reading.rx_dbm == -19.8
    assert reading.raw == OPTICS_OUTPUT
    assert reading.exit_code == 0
    assert reading.observed_at.tzinfo is not None
    assert ssh.calls == []
    assert telnet.calls[0][1] == 'show equipment ont optics ont-id 1/1/3/2/1'


def test_optics_reading_dict_shape(service_factory):
    service, _, _ = service_factory()
    payload = service.get_ont_optics(' 1/1/3/2/1 ').to_dict()

    assert set(payload) == {'ontPath', 'rxDbm', 'raw', 'at', 'exitCode'}
    assert payload['ontPath'] == '1/1/3/2/1'
    assert payload['rxDbm'] == -19.8


@pytest.mark.parametrize('ont', ['abc', '1/1/3/2', '', '   ', None, 12345])
def test_invalid_ont_never_reaches_the_olt(service_factory, ont):
    service, ssh, telnet = service_factory()

    with pytest.raises(InvalidOnt):
        service.get_ont_optics(ont)

    assert ssh.calls == [] and telnet.calls == []


def test_invalid_ont_checked_before_credentials(make_config):
    service = OLTCommandService(settings=make_config(), telnet_runner=RecordingRunner())
    with pytest.raises(InvalidOnt):
        service.get_ont_optics('abc')


def test_stderr_used_when_stdout_empty(service_factory):
    result = CommandExecutionResult(stdout='', stderr='RX: -25.1 dBm', exit_code=1)
    service, _, _ = service_factory(result=result)

    reading = service.get_ont_optics('1/1/3/2/1')

    assert reading.raw == 'RX: -25.1 dBm'
    assert reading.rx_dbm == -25.1
    assert reading.exit_code == 1


def test_missing_value_is_not_an_error(service_factory):
    result = CommandExecutionResult(stdout='', stderr='', exit_code=None)
    service, _, _ = service_factory(result=result)

    before = REGISTRY.get_sample_value('olt_ont_rx_power_missing_total', {'ont_path': '9/9/9/9/9'}) or 0
    reading = service.get_ont_optics('9/9/9/9/9')

    assert reading.raw == ''
    assert reading.rx_dbm is None
    assert reading.exit_code is None
    assert REGISTRY.get_sample_value('olt_ont_rx_power_missing_total', {'ont_path': '9/9/9/9/9'}) == before + 1


def test_rx_gauge_updated(service_factory):
    service, _, _ = service_factory()
    service.get_ont_optics('1/1/3/2/7')
    assert REGISTRY.get_sample_value('olt_ont_rx_power_dbm', {'ont_path': '1/1/3/2/7'}) == -19.8


def test_ssh_timeouts(service_factory):
    service, ssh, telnet = service_factory(protocol='SSH')
    assert service.protocol is ProtocolKind.SSH

    service.test_connection()
    service.get_ont_optics('1/1/3/2/1')

    assert [call[2]['timeout'] for call in ssh.calls] == [8, 10]
    assert [call[1] for call in ssh.calls] == [TEST_COMMAND, OPTICS_COMMAND.format(ont_path='1/1/3/2/1')]
    assert ssh.calls[0][0].port == 22
    assert telnet.calls == []


def test_telnet_settings_passed_to_runner(service_factory):
    service, _, telnet = service_factory(
        TELNET_SHELL_PROMPT='OLT-1#', TELNET_LOGIN_TIMEOUT_MS='3000', TELNET_COMMAND_TIMEOUT_MS='4500',
        TELNET_LINE_TERMINATOR='\\n',
    )

    service.test_connection()

    params, command, kwargs = telnet.calls[0]
    assert params == ConnectionParameters('10.0.0.1', 23, 'isadmin', 'secret')
    assert command == 'show version'
    assert kwargs['prompts'] == TelnetPrompts('login:', 'Password:', 'OLT-1#')
    assert kwargs['login_timeout'] == 3.0
    assert kwargs['command_timeout'] == 4.5
    assert kwargs['line_terminator'] == '\n'


def test_test_connection_result(service_factory):
    result = CommandExecutionResult(stdout='ISAM FX R6.2', stderr='', exit_code=0)
    service, _, _ = service_factory(result=result)

    assert service.test_connection({'host': '10.9.9.9', 'port': '2323'}) == {
        'ok': True,
        'stdout': 'ISAM FX R6.2',
        'stderr': '',
        'host': '10.9.9.9',
        'port': 2323,
        'username': 'isadmin',
        'protocol': 'telnet',
    }
    assert service.cache.get() is None


def test_connect_caches_verified_credentials(service_factory):
    service, _, telnet = service_factory()

    service.connect({'host': '10.2.2.2', 'username': 'ops', 'password': 'ops-pass'})
    service.get_ont_optics('1/1/3/2/1')

    assert service.cache.get() == ConnectionParameters('10.2.2.2', 23, 'ops', 'ops-pass')
    assert telnet.calls[-1][0] == ConnectionParameters('10.2.2.2', 23, 'ops', 'ops-pass')


def test_failed_connect_leaves_cache_untouched(service_factory):
    service, _, _ = service_factory(error=TelnetConnectionError('Telnet connection error: refused'))

    with pytest.raises(TelnetConnectionError):
        service.connect({'host': '10.2.2.2'})

    assert service.cache.get() is None


def test_missing_credentials(make_config):
    runner = RecordingRunner()
    service = OLTCommandService(settings=make_config(), telnet_runner=runner)

    with pytest.raises(MissingCredentials):
        service.test_connection()
    assert runner.calls == []


def test_transport_errors_propagate_and_are_counted(service_factory):
    service, _, _ = service_factory(protocol='ssh', error=SshTimeout('SSH command timed out after 10s'))
    labels = {'protocol': 'ssh', 'error_kind': 'SSH_TIMEOUT'}
    before = REGISTRY.get_sample_value('olt_session_errors_total', labels) or 0

    with pytest.raises(SshTimeout):
        service.get_ont_optics('1/1/3/2/1')

    assert REGISTRY.get_sample_value('olt_session_errors_total', labels) == before + 1
    assert REGISTRY.get_sample_value('olt_session_success', {'protocol': 'ssh', 'operation': 'ont_optics'}) == 0


def test_optics_over_telnet_end_to_end(make_config, fake_olt):
    server = fake_olt()
    settings = make_config(OLT_HOST_DEFAULT='127.0.0.1', OLT_TELNET_PORT=server.port, OLT_USERNAME='isadmin',
                           OLT_PASSWORD='secret', TELNET_SHELL_PROMPT='#')
    service = OLTCommandService(settings=settings)

    reading = service.get_ont_optics('1/1/3/2/1')

    assert reading.rx_dbm == -19.8
    assert reading.exit_code == 0
    assert reading.raw == OPTICS_OUTPUT


class ShiftingCache(ConnectionCache):
    """Cache whose slot is replaced by another caller right after each read"""

    def __init__(self, *params):
        super().__init__()
        self.reads = list(params)
        self.stored = []

    def get(self):
        return self.reads.pop(0) if self.reads else None

    def set(self, params):
        self.stored.append(params)


def test_connect_caches_the_credentials_it_tested(make_config):
    first = ConnectionParameters('olt-a', 23, 'a-user', 'a-pass')
    second = ConnectionParameters('olt-b', 23, 'b-user', 'b-pass')
    cache = ShiftingCache(first, second)
    runner = RecordingRunner()
    service = OLTCommandService(settings=make_config(), cache=cache, telnet_runner=runner)

    result = service.connect()

    tested = [call[0] for call in runner.calls]
    assert tested == [first]
    assert cache.stored == tested
    assert result['host'] == 'olt-a'
